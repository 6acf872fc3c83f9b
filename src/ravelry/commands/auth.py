"""Auth commands -- manage credential profiles.

Provides the ``ravelry auth`` sub-command group. A profile is either a
Basic key pair or an OAuth2 application with its last token set; both
live in the profile store managed by :mod:`ravelry.config`.

Typical workflow::

    ravelry auth basic personal --access-key KEY      # prompts for the personal key
    ravelry auth login app --client-id ID              # browser authorization
    ravelry auth status app
    ravelry auth use personal
"""

from __future__ import annotations

import asyncio
import webbrowser
from typing import Optional

import typer

from ravelry.auth.flow import AuthorizationFlow
from ravelry.auth.oauth_client import OAuth2Client
from ravelry.commands import exit_with
from ravelry.config import (
    delete_profile,
    get_profile,
    list_profiles,
    load_config,
    load_settings,
    save_profile,
    save_token,
    set_current_profile,
)
from ravelry.exceptions import ConfigError, RavelryError
from ravelry.models import DEFAULT_SCOPES, BasicProfile, OAuth2Profile, TokenSet
from ravelry.output import get_output
from ravelry.plugins.basic import BasicAuth

auth_app = typer.Typer(no_args_is_help=True)


def _profile_argument(ctx: typer.Context, profile_name: Optional[str]) -> str:
    name = profile_name or (ctx.obj or {}).get("profile") or load_config().current_profile
    if not name:
        exit_with(ConfigError("No profile given and no current profile set"))
    return name


@auth_app.command("basic")
def auth_basic(
    profile_name: str = typer.Argument(help="Name to store the key pair under."),
    access_key: str = typer.Option(..., "--access-key", "-a", help="Ravelry API access key."),
    personal_key: str = typer.Option(
        ...,
        "--personal-key",
        "-k",
        prompt=True,
        hide_input=True,
        help="Personal key (full access) or secret key (read-only).",
    ),
    use: bool = typer.Option(False, "--use", help="Make this the current profile."),
) -> None:
    """Store a Basic auth key pair as a profile.

    Example::

        ravelry auth basic personal --access-key read-abc123 --use
    """
    try:
        BasicAuth(access_key, personal_key)
        save_profile(
            profile_name,
            BasicProfile(access_key=access_key, personal_key=personal_key),
            make_current=use,
        )
    except RavelryError as exc:
        exit_with(exc, profile_name)
    get_output().success(f'Basic profile "{profile_name}" saved.')


@auth_app.command("login")
def auth_login(
    profile_name: str = typer.Argument(help="OAuth2 profile to authorize."),
    client_id: Optional[str] = typer.Option(
        None, "--client-id", help="OAuth2 client id (reused from the profile if omitted)."
    ),
    client_secret: Optional[str] = typer.Option(
        None, "--client-secret", help="OAuth2 client secret (prompted if needed)."
    ),
    scope: Optional[list[str]] = typer.Option(
        None, "--scope", "-s", help="Scope to request; repeatable. Defaults to 'offline'."
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Seconds to wait for the browser redirect."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the URL instead of opening a browser."
    ),
    use: bool = typer.Option(False, "--use", help="Make this the current profile."),
) -> None:
    """Authorize an OAuth2 profile in the browser and store its tokens.

    A local HTTPS listener with a self-signed certificate receives the
    redirect, so the browser shows a certificate warning once.

    Example::

        ravelry auth login app --client-id abc --use
    """
    output = get_output()
    settings = load_settings()

    existing: Optional[OAuth2Profile] = None
    if profile_name in load_config().profiles:
        stored = get_profile(profile_name)
        if isinstance(stored, OAuth2Profile):
            existing = stored

    client_id = client_id or (existing.client_id if existing else None)
    if not client_id:
        exit_with(ConfigError("--client-id is required for a new OAuth2 profile"), profile_name)
    if not client_secret:
        if existing and existing.client_id == client_id:
            client_secret = existing.client_secret
        else:
            client_secret = typer.prompt("Client secret", hide_input=True)
    scopes = list(scope) if scope else (existing.scopes if existing else list(DEFAULT_SCOPES))

    profile = OAuth2Profile(client_id=client_id, client_secret=client_secret, scopes=scopes)
    client = OAuth2Client(profile.client_config(settings.redirect_uri))

    def announce(url: str) -> None:
        output.info("Open this URL to authorize ravelry:")
        output.print_data(url)
        if not no_browser:
            webbrowser.open(url)

    flow = AuthorizationFlow(client, on_authorization_url=announce)
    try:
        token = asyncio.run(flow.run(scopes, timeout or settings.callback_timeout))
    except RavelryError as exc:
        exit_with(exc, profile_name)

    save_profile(
        profile_name,
        profile.model_copy(update={"token": token}),
        make_current=use,
    )
    output.success(f'OAuth2 profile "{profile_name}" authorized.')
    if token.refresh_token is None:
        output.warning("No refresh token issued; request the 'offline' scope to stay signed in.")


@auth_app.command("refresh")
def auth_refresh(
    ctx: typer.Context,
    profile_name: Optional[str] = typer.Argument(None, help="OAuth2 profile (default: current)."),
) -> None:
    """Refresh an OAuth2 profile's access token now."""
    name = _profile_argument(ctx, profile_name)
    settings = load_settings()
    try:
        profile = get_profile(name)
        if not isinstance(profile, OAuth2Profile):
            raise ConfigError(f'Profile "{name}" uses Basic auth; nothing to refresh')
        if profile.token is None:
            raise ConfigError(f'Profile "{name}" has no token yet')
        client = OAuth2Client(profile.client_config(settings.redirect_uri))
        token = asyncio.run(client.refresh(profile.token))
        save_token(name, token)
    except RavelryError as exc:
        exit_with(exc, name)
    get_output().success(f'Token for "{name}" refreshed.')


@auth_app.command("list")
def auth_list() -> None:
    """List stored profiles."""
    config = load_config()
    names = list_profiles()
    if not names:
        get_output().info("No profiles configured.")
        get_output().suggest("Add one: ravelry auth basic <name> --access-key KEY")
        return
    rows = []
    for name in names:
        profile = config.profiles[name]
        rows.append([
            name,
            profile.type,
            "*" if name == config.current_profile else "",
        ])
    get_output().print_table(["name", "type", "current"], rows, title="Profiles")


@auth_app.command("use")
def auth_use(profile_name: str = typer.Argument(help="Profile to make current.")) -> None:
    """Set the current profile."""
    try:
        set_current_profile(profile_name)
    except RavelryError as exc:
        exit_with(exc, profile_name)
    get_output().success(f'Now using "{profile_name}".')


@auth_app.command("status")
def auth_status(
    ctx: typer.Context,
    profile_name: Optional[str] = typer.Argument(None, help="Profile (default: current)."),
) -> None:
    """Show a profile's auth kind and, for OAuth2, token expiry. Secrets are never shown."""
    name = _profile_argument(ctx, profile_name)
    try:
        profile = get_profile(name)
    except RavelryError as exc:
        exit_with(exc, name)

    record: dict[str, object] = {"profile": name, "type": profile.type}
    if isinstance(profile, BasicProfile):
        record["access_key"] = profile.access_key
    else:
        record["client_id"] = profile.client_id
        record["scopes"] = " ".join(profile.scopes)
        record.update(_token_status(profile.token))
    get_output().print_record(record, title="Auth status")


def _token_status(token: Optional[TokenSet]) -> dict[str, object]:
    if token is None:
        return {"token": "none"}
    remaining = token.seconds_remaining()
    return {
        "token": "expired" if token.is_expired() else "valid",
        "expires_at": token.expires_at.isoformat() if token.expires_at else "never",
        "expires_in": None if remaining is None else int(remaining),
        "refresh_token": "yes" if token.refresh_token else "no",
    }


@auth_app.command("remove")
def auth_remove(
    profile_name: str = typer.Argument(help="Profile to delete."),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation."),
) -> None:
    """Delete a stored profile and its credentials."""
    if not force:
        if not typer.confirm(f'Remove profile "{profile_name}"?'):
            get_output().info("Cancelled.")
            raise typer.Exit()
    try:
        delete_profile(profile_name)
    except RavelryError as exc:
        exit_with(exc, profile_name)
    get_output().success(f'Profile "{profile_name}" removed.')
