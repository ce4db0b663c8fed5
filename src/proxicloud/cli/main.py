"""
ProxiCloud CLI entry point.

Usage:
    proxicloud [OPTIONS] COMMAND [ARGS]...

Commands:
    serve     Run the API server
    network   Network helpers (subnet/gateway check)
    version   Show version information
"""

from typing import Annotated

import typer

from proxicloud.cli.commands import network
from proxicloud.cli.output import console, print_error

app = typer.Typer(
    name="proxicloud",
    help="ProxiCloud project and network provisioning for Proxmox VE",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Register command groups
app.add_typer(network.app, name="network", help="Network helpers")


@app.command("serve")
def serve(
    config_path: Annotated[
        str | None,
        typer.Option(
            "--config", "-c", help="YAML config file", envvar="PROXICLOUD_CONFIG"
        ),
    ] = None,
    host: Annotated[
        str | None, typer.Option("--host", "-H", help="Bind address")
    ] = None,
    port: Annotated[int | None, typer.Option("--port", "-P", help="Bind port")] = None,
):
    """Run the API server."""
    from proxicloud.server import app as server_app
    from proxicloud.server.config import ConfigError, config, load_config

    try:
        load_config(config_path)
        if host:
            config.BIND_IP = host
        if port:
            config.PORT = port
        config.validate()
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(1)

    server_app.run()


@app.command("version")
def version():
    """Show version information."""
    from proxicloud import __version__

    console.print(f"ProxiCloud v{__version__}")


def run():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    run()
