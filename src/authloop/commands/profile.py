"""Profile commands -- manage saved OAuth clients.

Provides the ``authloop profile`` sub-command group. A profile stores the
provider endpoints, credential *sources* (never the resolved secrets,
unless ``literal:`` is used), scopes and local server settings, so that
``authloop login --profile NAME`` needs no other flags.

Typical workflow::

    authloop profile save google \\
        --authorization-url https://accounts.google.com/o/oauth2/v2/auth \\
        --token-url https://oauth2.googleapis.com/token \\
        --client-id-source env:GOOGLE_CLIENT_ID \\
        --client-secret-source env:GOOGLE_CLIENT_SECRET \\
        --scope openid --scope email --param access_type=offline
    authloop profile list
    authloop login --profile google
"""

from __future__ import annotations

import json
from typing import Optional

import typer

from authloop.commands.login import settings_from_options
from authloop.exceptions import AuthloopError
from authloop.models import DEFAULT_BIND_ADDRESS, Profile, ServerSettings
from authloop.output import error, info, print_data, print_table, success, suggest


profile_app = typer.Typer(no_args_is_help=True)


def _parse_params(values: Optional[list[str]]) -> dict[str, str]:
    params: dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            error(f"Invalid --param '{item}', expected KEY=VALUE.")
            raise typer.Exit(code=2)
        params[key] = value
    return params


@profile_app.command("save")
def profile_save(
    name: str = typer.Argument(help="Profile name."),
    authorization_url: Optional[str] = typer.Option(
        None, "--authorization-url", help="Provider authorization endpoint."
    ),
    token_url: Optional[str] = typer.Option(
        None, "--token-url", help="Provider token endpoint."
    ),
    client_id_source: Optional[str] = typer.Option(
        None, "--client-id-source", help="env:VAR, file:/path, prompt, literal:VALUE."
    ),
    client_secret_source: Optional[str] = typer.Option(
        None, "--client-secret-source", help="Client secret source."
    ),
    scope: Optional[list[str]] = typer.Option(
        None, "--scope", "-s", help="Scope to request. Repeatable."
    ),
    param: Optional[list[str]] = typer.Option(
        None, "--param", help="Extra authorization parameter KEY=VALUE. Repeatable."
    ),
    bind_address: Optional[list[str]] = typer.Option(
        None, "--bind-address", "-b", help="host:port candidate. Repeatable."
    ),
    cert_file: Optional[str] = typer.Option(None, "--cert-file", help="PEM certificate chain."),
    key_file: Optional[str] = typer.Option(None, "--key-file", help="PEM private key."),
    callback_path: Optional[str] = typer.Option(
        None, "--callback-path", help="Path of the redirect endpoint."
    ),
    success_html: Optional[str] = typer.Option(
        None, "--success-html", help="File sent to the browser after the redirect."
    ),
) -> None:
    """Create a profile, or update the given fields of an existing one.

    Raises:
        typer.Exit: With code 2 if a new profile lacks a required field.

    Example::

        authloop profile save github --scope read:user
    """
    from authloop.config import load_profile, profile_exists, save_profile

    try:
        existing = load_profile(name) if profile_exists(name) else None
    except AuthloopError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    data = existing.model_dump() if existing else {"name": name}
    for key, value in (
        ("authorization_url", authorization_url),
        ("token_url", token_url),
        ("client_id_source", client_id_source),
        ("client_secret_source", client_secret_source),
    ):
        if value is not None:
            data[key] = value
    if scope:
        data["scopes"] = list(scope)
    if param:
        data["auth_params"] = {**data.get("auth_params", {}), **_parse_params(param)}

    missing = [
        f"--{key.replace('_', '-')}"
        for key in ("authorization_url", "token_url", "client_id_source")
        if not data.get(key)
    ]
    if missing:
        error(f"Missing {', '.join(missing)} for new profile '{name}'.")
        raise typer.Exit(code=2)

    base = existing.server if existing else ServerSettings()
    data["server"] = settings_from_options(
        base,
        bind_address=bind_address,
        cert_file=cert_file,
        key_file=key_file,
        callback_path=callback_path,
        success_html=success_html,
    ).model_dump()

    try:
        profile = Profile.model_validate(data)
        path = save_profile(profile)
    except (AuthloopError, ValueError) as exc:
        error(f"Cannot save profile '{name}': {exc}")
        raise typer.Exit(code=1) from None

    success(f'Profile "{name}" saved to {path}.')
    suggest(f"Log in: authloop login --profile {name}")


@profile_app.command("list")
def profile_list() -> None:
    """List saved profiles.

    Profiles that fail to load are shown with an ``error`` status.
    """
    from authloop.config import list_profiles, load_profile

    names = list_profiles()
    if not names:
        info("No profiles configured.")
        suggest("Create one: authloop profile save NAME --authorization-url ...")
        return

    rows: list[list[str]] = []
    for name in names:
        try:
            profile = load_profile(name)
        except AuthloopError:
            rows.append([name, "error", "-", "-"])
            continue
        rows.append([
            name,
            profile.authorization_url,
            " ".join(profile.scopes) or "-",
            ", ".join(profile.server.bind_addresses) or DEFAULT_BIND_ADDRESS,
        ])
    print_table(
        ["Profile", "Authorization URL", "Scopes", "Bind Addresses"],
        rows,
        title="Profiles",
    )


@profile_app.command("show")
def profile_show(name: str = typer.Argument(help="Profile name.")) -> None:
    """Print a profile as JSON."""
    from authloop.config import load_profile

    try:
        profile = load_profile(name)
    except AuthloopError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
    print_data(json.dumps(profile.model_dump(mode="json"), indent=2))


@profile_app.command("delete")
def profile_delete(
    name: str = typer.Argument(help="Profile name."),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation."),
) -> None:
    """Delete a saved profile."""
    from authloop.config import delete_profile, profile_exists

    if not profile_exists(name):
        error(f"Profile '{name}' not found.")
        raise typer.Exit(code=1)
    if not force and not typer.confirm(f'Delete profile "{name}"?'):
        info("Cancelled.")
        raise typer.Exit()
    delete_profile(name)
    success(f'Profile "{name}" deleted.')
