"""ravelry -- async client core for the Ravelry REST API.

This package holds the part of a Ravelry client that has real protocol and
concurrency complexity: obtaining, storing, and refreshing credentials
under the two supported schemes (static key-pair Basic auth and the OAuth2
authorization-code flow), injecting them into every outbound request, and
classifying every HTTP response into a small typed outcome set.

Typical usage::

    from ravelry.client import AsyncClient
    from ravelry.plugins.basic import BasicAuth

    async with AsyncClient(BasicAuth("access_key", "personal_key")) as client:
        outcome = await client.get("current_user.json")
        user = outcome.unwrap()

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the package.
    config: XDG-aware profile store used by the CLI.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.3.0"
