"""labctl -- a command-line client for GitLab-style project-management services.

The package authenticates against a remote host (OAuth2 Authorization Code
with PKCE, or a static personal access token), persists per-host credentials,
and keeps OAuth access tokens fresh so that API-calling commands always get a
usable bearer token.

Typical workflow::

    labctl auth login --hostname gitlab.example.com   # browser-based OAuth
    labctl auth status                                # inspect stored hosts
    labctl auth token                                 # print a live token

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models shared across the package.
    config: XDG-aware configuration, paths and host validation.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
    auth: Credential storage, login flows and token lifecycle.
"""

__version__ = "0.3.0"
