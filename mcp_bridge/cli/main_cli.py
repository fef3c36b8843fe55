# mcp_bridge/cli/main_cli.py
import json
from enum import Enum
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv

# <project>/mcp_bridge/cli/main_cli.py -> three .parent calls reach the project root
project_root = Path(__file__).parent.parent.parent.resolve()
load_dotenv(dotenv_path=project_root / '.env', override=True)

app = typer.Typer(
    name="mcp-bridge",
    help="MCP Bridge Command Line Interface.",
    no_args_is_help=True
)


class DiscoveryDocument(str, Enum):
    authorization_server = "oauth-authorization-server"
    protected_resource = "oauth-protected-resource"
    openid_configuration = "openid-configuration"
    mcp = "mcp.json"


@app.callback()
def main_callback():
    """
    MCP Bridge main CLI application.
    """
    pass


@app.command("serve")
def serve(
    host: str = typer.Option("127.0.0.1", help="Interface to bind."),
    port: int = typer.Option(3000, help="Port to listen on."),
    reload: bool = typer.Option(False, help="Reload on code changes."),
    log_level: str = typer.Option("info", help="Uvicorn log level."),
):
    """Run the MCP Bridge server with uvicorn."""
    import uvicorn

    typer.echo(f"Starting MCP Bridge on {host}:{port}")
    uvicorn.run("mcp_bridge.main:app", host=host, port=port, reload=reload, log_level=log_level.lower())


@app.command("metadata")
def show_metadata(
    document: DiscoveryDocument = typer.Argument(
        DiscoveryDocument.authorization_server, help="Which discovery document to print."
    ),
    mcp_path: str = typer.Option("/mcp", help="MCP endpoint path the document describes."),
    base_url: Optional[str] = typer.Option(None, help="Override BASE_URL for this rendering."),
):
    """Print a discovery document as the server would publish it."""
    from ..oauth.metadata import MetadataGenerator
    from ..oauth.models import DiscoveryConfig
    from ..settings import settings

    cfg = settings.model_copy(update={"base_url": base_url}) if base_url else settings
    generator = MetadataGenerator(DiscoveryConfig.from_settings(cfg))

    if document == DiscoveryDocument.authorization_server:
        model = generator.authorization_server_metadata(mcp_path)
    elif document == DiscoveryDocument.protected_resource:
        model = generator.protected_resource_metadata(mcp_path)
    elif document == DiscoveryDocument.openid_configuration:
        model = generator.openid_configuration(mcp_path)
    else:
        model = generator.mcp_server_info(mcp_path)

    typer.echo(json.dumps(model.model_dump(exclude_none=True), indent=2))


@app.command("generate-key")
def generate_key():
    """Print a new Fernet key for SESSION_ENCRYPTION_KEY."""
    from ..utils.security import generate_session_encryption_key

    key = generate_session_encryption_key()
    typer.secho("Add this to your .env file:", fg=typer.colors.GREEN)
    typer.echo(f"SESSION_ENCRYPTION_KEY={key}")


def cli_entry_point():
    """Entry point function for console script registration in pyproject.toml"""
    app()


if __name__ == "__main__":
    cli_entry_point()
