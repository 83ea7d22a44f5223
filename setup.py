from setuptools import setup, find_packages


setup(
    name="frontcrypt",
    version="0.1",
    packages=find_packages(include=["frontcrypt", "frontcrypt.*"]),
    description="Package a directory into a password-protected bundle that decrypts and serves itself in the browser.",
    author="vercingetorx",
    install_requires=[
        "pycryptodomex>=3.23.0",
    ],
    entry_points={
        "console_scripts": [
            "frontcrypt=frontcrypt.cli:main",
        ]
    },
)
