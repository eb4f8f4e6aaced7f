"""Login command -- run the Authorization Code grant from the terminal.

Starts the local callback server, opens the authorization URL in the
user's browser, waits for the redirect, exchanges the code and prints the
token to stdout. Settings come from a saved profile (``--profile`` or
``AUTHLOOP_PROFILE``) and can be overridden by flags.

Typical usage::

    authloop login --profile github
    authloop login --authorization-url https://idp.example.com/authorize \\
        --token-url https://idp.example.com/token \\
        --client-id-source env:CLIENT_ID --scope openid --json
"""

from __future__ import annotations

import webbrowser
from typing import Optional

import typer

from authloop.config import resolve_credential
from authloop.exceptions import AuthloopError, InvalidUsageError
from authloop.exit_codes import EXIT_CANCELLED
from authloop.models import Profile, ServerSettings
from authloop.output import error, format_record, info, success, suggest, warning
from authloop.token_client import TokenClient


def settings_from_options(
    base: ServerSettings,
    bind_address: Optional[list[str]] = None,
    address: Optional[str] = None,
    port: Optional[list[int]] = None,
    cert_file: Optional[str] = None,
    key_file: Optional[str] = None,
    callback_path: Optional[str] = None,
    success_html: Optional[str] = None,
) -> ServerSettings:
    """Return a copy of *base* with every given CLI option applied."""
    updates: dict[str, object] = {}
    if bind_address:
        updates["bind_addresses"] = list(bind_address)
    if address is not None:
        updates["address"] = address
    if port:
        updates["ports"] = list(port)
    if cert_file is not None:
        updates["cert_file"] = cert_file
    if key_file is not None:
        updates["key_file"] = key_file
    if callback_path is not None:
        updates["callback_path"] = callback_path
    if success_html is not None:
        updates["success_html_file"] = success_html
    return ServerSettings.model_validate({**base.model_dump(), **updates})


def _build_client(
    profile: Optional[Profile],
    authorization_url: Optional[str],
    token_url: Optional[str],
    client_id_source: Optional[str],
    client_secret_source: Optional[str],
    scope: Optional[list[str]],
) -> TokenClient:
    authorization_url = authorization_url or (profile.authorization_url if profile else None)
    token_url = token_url or (profile.token_url if profile else None)
    client_id_source = client_id_source or (profile.client_id_source if profile else None)
    client_secret_source = client_secret_source or (
        profile.client_secret_source if profile else None
    )

    missing = [
        flag
        for flag, value in (
            ("--authorization-url", authorization_url),
            ("--token-url", token_url),
            ("--client-id-source", client_id_source),
        )
        if not value
    ]
    if missing:
        raise InvalidUsageError(
            f"Missing {', '.join(missing)} (pass the option or use --profile)"
        )

    return TokenClient(
        client_id=resolve_credential(client_id_source),
        authorization_url=authorization_url,
        token_url=token_url,
        client_secret=resolve_credential(client_secret_source) if client_secret_source else None,
        scopes=scope or (profile.scopes if profile else []),
        extra_params=profile.auth_params if profile else None,
    )


def login_command(
    ctx: typer.Context,
    authorization_url: Optional[str] = typer.Option(
        None, "--authorization-url", help="Provider authorization endpoint."
    ),
    token_url: Optional[str] = typer.Option(
        None, "--token-url", help="Provider token endpoint."
    ),
    client_id_source: Optional[str] = typer.Option(
        None,
        "--client-id-source",
        help="Client id source: env:VAR, file:/path, prompt, literal:VALUE.",
    ),
    client_secret_source: Optional[str] = typer.Option(
        None, "--client-secret-source", help="Client secret source (confidential clients)."
    ),
    scope: Optional[list[str]] = typer.Option(
        None, "--scope", "-s", help="Scope to request. Repeatable."
    ),
    bind_address: Optional[list[str]] = typer.Option(
        None,
        "--bind-address",
        "-b",
        help="host:port for the local server, tried in order. Repeatable. Port 0 picks a free port.",
    ),
    address: Optional[str] = typer.Option(
        None, "--address", help="Deprecated: use --bind-address."
    ),
    port: Optional[list[int]] = typer.Option(
        None, "--port", help="Deprecated: use --bind-address."
    ),
    cert_file: Optional[str] = typer.Option(
        None, "--cert-file", help="PEM certificate chain; serves HTTPS when set."
    ),
    key_file: Optional[str] = typer.Option(
        None, "--key-file", help="PEM private key for --cert-file."
    ),
    callback_path: Optional[str] = typer.Option(
        None, "--callback-path", help="Path of the redirect endpoint (default '/')."
    ),
    success_html: Optional[str] = typer.Option(
        None, "--success-html", help="File sent to the browser after the redirect."
    ),
    timeout: float = typer.Option(
        300.0, "--timeout", "-t", help="Seconds to wait for the redirect."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the URL instead of opening a browser."
    ),
) -> None:
    """Log in through the browser and print the token.

    The access token is printed alone in plain mode so it can be captured
    by a shell; ``--json`` prints the whole token response.

    Raises:
        typer.Exit: With the exit code of the failure (2 usage, 3 denied or
            exchange failed, 6 no free address, 130 cancelled or timed out).

    Example::

        TOKEN=$(authloop --plain login --profile github)
    """
    from authloop.config import load_profile, resolve_profile_name
    from authloop.flow import get_token
    from authloop.server import CancelToken

    cli_profile = ctx.obj.get("profile") if ctx.obj else None

    def _on_authorize(url: str) -> None:
        info("Open the following URL in your browser to log in:")
        info(url)
        if not no_browser:
            webbrowser.open(url)

    try:
        if timeout <= 0:
            raise InvalidUsageError("--timeout must be positive")
        profile_name = resolve_profile_name(cli_profile)
        profile = load_profile(profile_name) if profile_name else None

        client = _build_client(
            profile, authorization_url, token_url, client_id_source,
            client_secret_source, scope,
        )
        settings = settings_from_options(
            profile.server if profile else ServerSettings(),
            bind_address, address, port, cert_file, key_file, callback_path, success_html,
        )
        if settings.ports or settings.address:
            warning("'address' and 'ports' are deprecated; use bind addresses instead.")

        token = get_token(
            client,
            settings,
            on_authorize=_on_authorize,
            cancel=CancelToken.with_timeout(timeout),
        )
    except AuthloopError as exc:
        error(str(exc))
        if isinstance(exc, InvalidUsageError):
            suggest("See: authloop login --help")
        raise typer.Exit(code=exc.exit_code) from None
    except KeyboardInterrupt:
        error("Cancelled.")
        raise typer.Exit(code=EXIT_CANCELLED) from None

    success("Authorization complete.")
    format_record(token.model_dump(mode="json"), primary="access_token")
