"""Built-in CLI sub-commands for ravelry.

* :mod:`~ravelry.commands.auth` -- store key pairs, run the OAuth2 login,
  refresh tokens, and manage profiles.

:func:`exit_with` is the shared error exit: it prints the error and a
next-step hint, then leaves with the error's exit code.
"""

from __future__ import annotations

from typing import NoReturn, Optional

import typer

from ravelry.exceptions import (
    AuthorizationAborted,
    RavelryError,
    RefreshFailed,
    Unauthenticated,
)
from ravelry.output import get_output


def exit_with(exc: RavelryError, profile_name: Optional[str] = None) -> NoReturn:
    """Report *exc* on stderr and exit with its ``exit_code``."""
    output = get_output()
    output.error(str(exc))
    login = f"ravelry auth login {profile_name}" if profile_name else "ravelry auth login <profile>"
    if isinstance(exc, (Unauthenticated, RefreshFailed)):
        output.suggest(f"Authorize again: {login}")
    elif isinstance(exc, AuthorizationAborted):
        output.suggest(f"Start a new attempt: {login}")
    elif exc.retry_after is not None:
        output.suggest(f"Retry after {exc.retry_after} seconds")
    raise typer.Exit(code=exc.exit_code)
