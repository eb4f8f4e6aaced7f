"""authloop -- OAuth 2.0 / OIDC Authorization Code Grant for command-line programs.

A throwaway local HTTP(S) server receives the provider's redirect, so a CLI
can log a user in through the browser without any web presence of its own.

Typical workflow::

    authloop profile save github --authorization-url ... --token-url ... \\
        --client-id-source env:GITHUB_CLIENT_ID
    authloop login --profile github --json

Modules:
    server: The local callback server (bind, serve, wait, shut down).
    flow: Authorization Code grant built on top of the server.
    token_client: Authorization URL construction and code exchange.
    app: Typer application factory and CLI entry point.
    models: Pydantic models shared across the entire package.
    config: XDG-aware profile storage and server config normalisation.
    exceptions: Exception hierarchy with exit-code mapping.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
