from __future__ import annotations

import getpass as _getpass
import os
import sys
from typing import Optional

from .constants import PASSWORD_ENV
from .errors import InputError


def acquire_password(option_password: Optional[str] = None, *, prompt: str = "Enter password: ") -> str:
    """Password from the environment, then the CLI option, then a masked prompt.

    Raises:
        InputError: nothing was supplied and there is no terminal to ask on,
            or the interactive entry was empty or cancelled.
    """
    env_password = os.environ.get(PASSWORD_ENV)
    if env_password:
        return env_password
    if option_password:
        return option_password
    if not (sys.stdin.isatty() and sys.stdout.isatty()):
        raise InputError(
            f"No password given: set {PASSWORD_ENV}, pass --password, or run in a terminal"
        )
    try:
        password = _getpass.getpass(prompt)
    except (EOFError, KeyboardInterrupt) as exc:
        raise InputError("Password entry cancelled") from exc
    if not password:
        raise InputError("Password must not be empty")
    return password
