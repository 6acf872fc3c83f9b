"""Typer application and CLI entry point for ravelry.

The root app registers the ``auth`` group plus two API commands that run
through the request executor:

* ``whoami`` -- fetch ``current_user.json`` with the active profile.
* ``get PATH`` -- fetch any API path and print the decoded payload, with
  ``--etag`` for a conditional request and ``--no-auth`` for public
  endpoints.

:func:`main` is the console-script entry point. It maps
:class:`~ravelry.exceptions.RavelryError` to its exit code and writes a
crash log for anything unexpected.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from ravelry import __version__
from ravelry.commands import exit_with
from ravelry.commands.auth import auth_app
from ravelry.exit_codes import EXIT_GENERIC_FAILURE, EXIT_NOT_MODIFIED

app = typer.Typer(
    name="ravelry",
    help="Command-line client for the Ravelry API.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)
app.add_typer(auth_app, name="auth", help="Manage credential profiles.")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"ravelry {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool, no_color: bool) -> None:
    handler = RichHandler(
        console=Console(stderr=True, no_color=no_color),
        show_path=False,
        rich_tracebacks=False,
    )
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
        handlers=[handler],
        force=True,
    )
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    profile: Optional[str] = typer.Option(
        None, "--profile", "-p", help="Profile name to use."
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output and request logging."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Installs the global :class:`~ravelry.output.OutputManager`, configures
    logging, and stores the ``--profile`` override in ``ctx.obj``.
    """
    from ravelry.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))
    _configure_logging(verbose, no_color)

    ctx.ensure_object(dict)
    ctx.obj["profile"] = profile


async def _fetch(
    profile_override: Optional[str],
    path: str,
    params: dict[str, Any],
    etag: Optional[str],
    debug: bool,
    no_auth: bool,
) -> Any:
    """Execute one GET with the resolved profile and return the classified outcome."""
    from ravelry.auth.manager import create_authenticator
    from ravelry.auth.oauth_client import OAuth2Client
    from ravelry.client import AsyncClient
    from ravelry.config import load_settings, make_token_persister, resolve_profile
    from ravelry.models import AuthMode, Endpoint, OAuth2Profile, RequestOptions
    from ravelry.output import get_output

    settings = load_settings()
    name, profile = resolve_profile(settings, profile_override)

    authenticator = None
    if profile is not None and not no_auth:
        oauth_client = None
        on_update = None
        if isinstance(profile, OAuth2Profile):
            oauth_client = OAuth2Client(profile.client_config(settings.redirect_uri))
            if name is not None:
                on_update = make_token_persister(name)
        authenticator = create_authenticator(profile, oauth_client, on_update)
    elif profile is None and not no_auth:
        get_output().warning("No profile configured; sending the request without credentials.")

    endpoint = Endpoint(
        path=path,
        params=params,
        auth_mode=AuthMode.NONE if no_auth else AuthMode.DEFAULT,
        options=RequestOptions(debug=debug, if_none_match=etag),
    )
    async with AsyncClient(
        authenticator, base_url=settings.base_url, timeout=settings.timeout
    ) as client:
        get_output().debug(f"GET {client.base_url}{path.lstrip('/')}")
        return await client.execute(endpoint)


def _run_get(
    ctx: typer.Context,
    path: str,
    params: dict[str, Any],
    etag: Optional[str] = None,
    debug: bool = False,
    no_auth: bool = False,
) -> None:
    from ravelry.client import NotModifiedResponse, OkResponse
    from ravelry.exceptions import RavelryError
    from ravelry.output import get_output

    output = get_output()
    profile_override = (ctx.obj or {}).get("profile")
    try:
        outcome = asyncio.run(_fetch(profile_override, path, params, etag, debug, no_auth))
        if isinstance(outcome, NotModifiedResponse):
            output.info(f"Not modified (ETag {outcome.etag})")
            raise typer.Exit(code=EXIT_NOT_MODIFIED)
        data = outcome.unwrap()
    except RavelryError as exc:
        exit_with(exc, profile_override)

    assert isinstance(outcome, OkResponse)
    if outcome.etag:
        output.info(f"ETag: {outcome.etag}")
    if data is not None:
        output.print_payload(data)


@app.command("whoami")
def whoami(ctx: typer.Context) -> None:
    """Show the account the active profile authenticates as."""
    _run_get(ctx, "current_user.json", {})


@app.command("get")
def get(
    ctx: typer.Context,
    path: str = typer.Argument(help="API path, e.g. patterns/search.json"),
    param: Optional[list[str]] = typer.Option(
        None, "--param", "-P", help="Query parameter as key=value; repeatable."
    ),
    etag: Optional[str] = typer.Option(
        None, "--etag", help="Send If-None-Match; exits 7 when unchanged."
    ),
    debug: bool = typer.Option(False, "--debug", help="Ask the API for debug output."),
    no_auth: bool = typer.Option(False, "--no-auth", help="Send the request without credentials."),
) -> None:
    """GET an arbitrary API path and print the JSON payload."""
    from ravelry.exceptions import InvalidUsageError

    params: dict[str, Any] = {}
    for item in param or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            exit_with(InvalidUsageError(f"Invalid --param '{item}', expected key=value"))
        params[key] = value
    _run_get(ctx, path, params, etag=etag, debug=debug, no_auth=no_auth)


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write the current traceback into the data directory and return its path."""
    from ravelry.config import get_data_dir

    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = get_data_dir() / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``ravelry`` console script.

    :class:`~ravelry.exceptions.RavelryError` instances that escape a
    command exit with the error's ``exit_code``. Any other exception
    produces a crash log and a generic failure exit.
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from ravelry.exceptions import RavelryError
        from ravelry.output import get_output

        if isinstance(exc, RavelryError):
            get_output().error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log(exc)
        get_output().error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
