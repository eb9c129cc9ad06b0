"""Configuration Commands - CLI settings management"""

import typer

from ..utils.config_manager import config
from ..utils.formatting import print_error, print_info, print_success

app = typer.Typer(name="config", help="CLI configuration management")


@app.command("set")
def set_config(
    key: str = typer.Argument(..., help="Configuration key (e.g., 'api.base_url')"),
    value: str = typer.Argument(..., help="Configuration value"),
):
    """Set a configuration value"""
    if key == "api.base_url" and not value.startswith(("http://", "https://")):
        print_error("API base URL must start with http:// or https://")
        raise typer.Exit(1)

    if key.endswith(".timeout") and not value.isdigit():
        print_error("Timeout values must be numeric (seconds)")
        raise typer.Exit(1)

    try:
        config.set(key, int(value) if key.endswith(".timeout") else value)
    except OSError as e:
        print_error(f"Failed to set configuration: {e}")
        raise typer.Exit(1) from None

    print_success(f"Set {key}")
    if key == "api.base_url":
        print_info("Test connection with: jobsctl health")


@app.command("get")
def get_config(key: str = typer.Argument(..., help="Configuration key")):
    """Get a configuration value"""
    value = config.get(key)
    if value is None:
        print_error(f"Key '{key}' not found")
        raise typer.Exit(1)
    typer.echo("***" if key == "api.token" else value)


@app.command("show")
def show_config():
    """Show all configuration settings"""
    config.show_all()
