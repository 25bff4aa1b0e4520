"""
Command-line interface for MEFS SDK.

This module provides the ``mefs`` tool for managing buckets and objects on
a MEFS gateway from the command line.
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
from rich.console import Console
from rich.table import Table

from .client import MefsClient
from .exceptions import MefsError
from .utils import format_file_size

logger = logging.getLogger(__name__)

# Initialize Rich console
console = Console()


def default_config_file() -> Path:
    base = os.getenv("MEFS_PATH")
    if base:
        return Path(base).expanduser() / "config.json"
    return Path.home() / ".mefs" / "config.json"


class CLIContext:
    """CLI context object to share state between commands."""

    def __init__(self, config_file: Optional[Path] = None, trace: bool = False):
        self.client: Optional[MefsClient] = None
        self.config: Dict[str, Any] = {}
        self.config_file = Path(config_file) if config_file else default_config_file()
        self.trace = trace

    def load_config(self):
        """Load configuration from file."""
        if self.config_file.exists():
            try:
                with open(self.config_file, "r") as f:
                    self.config = json.load(f)
            except (json.JSONDecodeError, IOError) as e:
                logger.warning("Ignoring unreadable config file %s: %s", self.config_file, e)
                self.config = {}

    def save_config(self):
        """Save configuration to file."""
        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w") as f:
            json.dump(self.config, f, indent=2)
        self.config_file.chmod(0o600)

    def get_client(self) -> MefsClient:
        """Get a client from the saved configuration, falling back to MEFS_* variables."""
        if self.client is None:
            self.client = MefsClient(
                endpoint=self.config.get("endpoint"),
                access_key=self.config.get("access_key"),
                secret_key=self.config.get("secret_key"),
                region=self.config.get("region"),
                secure=bool(self.config.get("secure", False)),
            )
            if self.trace:
                self.client.trace_on(sys.stderr)
        return self.client


def fail(action: str, error: Exception) -> None:
    console.print(f"❌ {action}: {error}")
    sys.exit(1)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--trace", is_flag=True, help="Dump HTTP requests and responses to stderr")
@click.option("--config-file", type=click.Path(dir_okay=False), envvar="MEFS_CLI_CONFIG",
              help="Configuration file (default ~/.mefs/config.json)")
@click.pass_context
def cli(ctx, debug, trace, config_file):
    """MEFS CLI - manage buckets and objects on a MEFS gateway."""
    ctx.obj = CLIContext(config_file, trace=trace)
    ctx.obj.load_config()

    if debug:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s")
        console.print("[dim]Debug mode enabled[/dim]")


pass_cli_context = click.make_pass_decorator(CLIContext)


@cli.command()
@click.option("--endpoint", default="127.0.0.1:5001", help="Gateway address (host:port, URL or multiaddr)")
@click.option("--access-key", prompt=True, help="Access key (user address)")
@click.option("--secret-key", prompt=True, hide_input=True, help="Secret key")
@click.option("--region", default="", help='Fixed region, or "local" to read $MEFS_PATH/api')
@click.option("--secure", is_flag=True, help="Use HTTPS")
@pass_cli_context
def config(cli_context, endpoint, access_key, secret_key, region, secure):
    """Configure MEFS credentials and settings."""
    cli_context.config.update({
        "endpoint": endpoint,
        "access_key": access_key,
        "secret_key": secret_key,
        "secure": secure,
    })
    if region:
        cli_context.config["region"] = region
    cli_context.save_config()

    console.print("✅ Configuration saved successfully!")

    # Test connection
    try:
        up = cli_context.get_client().is_up()
    except MefsError as e:
        console.print(f"⚠️ Configuration saved but the client could not be created: {e}")
        return
    if up:
        console.print("✅ Connection test successful!")
    else:
        console.print("⚠️ Configuration saved but connection test failed")


@cli.command()
@pass_cli_context
def version(cli_context):
    """Show the gateway version."""
    try:
        ver, commit = cli_context.get_client().version()
    except MefsError as e:
        fail("Version check failed", e)
    console.print(f"{ver} ({commit})" if commit else ver)


@cli.command(name="id")
@click.argument("peer", required=False)
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@pass_cli_context
def node_id(cli_context, peer, output_json):
    """Show the identity of the gateway node or of PEER."""
    try:
        out = cli_context.get_client().id(peer)
    except MefsError as e:
        fail("Lookup failed", e)

    if output_json:
        console.print(json.dumps(out.__dict__, indent=2))
        return
    table = Table(title="Node Identity")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("ID", out.id)
    table.add_row("Agent", out.agent_version)
    table.add_row("Protocol", out.protocol_version)
    table.add_row("Addresses", "\n".join(out.addresses))
    console.print(table)


@cli.command()
@click.argument("bucket")
@click.option("--policy", type=int, help="Redundancy policy")
@click.option("--data-count", type=int, help="Number of data shards")
@click.option("--parity-count", type=int, help="Number of parity shards")
@pass_cli_context
def mb(cli_context, bucket, policy, data_count, parity_count):
    """Make a bucket."""
    try:
        cli_context.get_client().make_bucket(
            bucket, policy=policy, data_count=data_count, parity_count=parity_count
        )
    except MefsError as e:
        fail("Failed to create bucket", e)
    console.print(f"✅ Bucket created: {bucket}")


@cli.command()
@click.argument("bucket")
@click.option("--force", is_flag=True, help="Do not ask for confirmation")
@pass_cli_context
def rb(cli_context, bucket, force):
    """Remove a bucket."""
    if not force and not click.confirm(f"Remove bucket {bucket}?"):
        console.print("Aborted.")
        return
    try:
        cli_context.get_client().remove_bucket(bucket)
    except MefsError as e:
        fail("Failed to remove bucket", e)
    console.print(f"✅ Bucket removed: {bucket}")


@cli.command(name="ls")
@click.argument("bucket", required=False)
@click.option("--prefix", "-p", help="Only list objects starting with this prefix")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@pass_cli_context
def list_entries(cli_context, bucket, prefix, output_json):
    """List buckets, or the objects of BUCKET."""
    try:
        client = cli_context.get_client()
        entries = client.list_objects(bucket, prefix=prefix) if bucket else client.list_buckets()
    except MefsError as e:
        fail("Failed to list", e)

    if output_json:
        console.print(json.dumps([entry.to_dict() for entry in entries], indent=2, default=str))
        return
    if not entries:
        console.print("No objects found." if bucket else "No buckets found.")
        return

    if bucket:
        table = Table(title=f"Objects in {bucket}")
        table.add_column("Name", style="green")
        table.add_column("Size", style="yellow")
        table.add_column("ETag", style="blue")
        table.add_column("Modified", style="magenta")
        for obj in entries:
            table.add_row(
                obj.key + ("/" if obj.is_dir else ""),
                format_file_size(obj.size),
                obj.etag,
                obj.last_modified.strftime("%Y-%m-%d %H:%M") if obj.last_modified else "Unknown",
            )
    else:
        table = Table(title="Buckets")
        table.add_column("Name", style="green")
        table.add_column("Created", style="magenta")
        for info in entries:
            table.add_row(
                info.name,
                info.creation_date.strftime("%Y-%m-%d %H:%M") if info.creation_date else "Unknown",
            )
    console.print(table)


@cli.command()
@click.argument("bucket")
@click.argument("name")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@pass_cli_context
def stat(cli_context, bucket, name, output_json):
    """Show metadata of an object."""
    try:
        info = cli_context.get_client().stat_object(bucket, name)
    except MefsError as e:
        fail("Stat failed", e)

    if output_json:
        console.print(json.dumps(info.to_dict(), indent=2, default=str))
        return
    table = Table(title=f"Object Information: {info.key}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Name", info.key)
    table.add_row("Size", format_file_size(info.size))
    table.add_row("ETag", info.etag)
    table.add_row("Modified", info.last_modified.strftime("%Y-%m-%d %H:%M:%S") if info.last_modified else "Unknown")
    console.print(table)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.argument("bucket")
@click.argument("name", required=False)
@pass_cli_context
def put(cli_context, file, bucket, name):
    """Upload FILE to BUCKET (as NAME, default the file name)."""
    path = Path(file)
    name = name or path.name
    try:
        with open(path, "rb") as f:
            info = cli_context.get_client().put_object(bucket, name, f, path.stat().st_size)
    except MefsError as e:
        fail("Upload failed", e)
    console.print(f"✅ Uploaded: {bucket}/{info.key} ({format_file_size(info.size)})")


@cli.command()
@click.argument("bucket")
@click.argument("name")
@click.option("--output", "-o", type=click.Path(), help="Output file path")
@pass_cli_context
def get(cli_context, bucket, name, output):
    """Download an object."""
    target = Path(output) if output else Path(Path(name).name)
    try:
        written = cli_context.get_client().fget_object(bucket, name, target)
    except MefsError as e:
        fail("Download failed", e)
    console.print(f"✅ Downloaded: {target} ({format_file_size(written)})")


@cli.command()
@click.argument("bucket")
@click.argument("name")
@pass_cli_context
def rm(cli_context, bucket, name):
    """Remove an object."""
    try:
        cli_context.get_client().remove_object(bucket, name)
    except MefsError as e:
        fail("Failed to remove object", e)
    console.print(f"✅ Removed: {bucket}/{name}")


@cli.command()
@pass_cli_context
def keepers(cli_context):
    """List the keepers serving the configured user."""
    try:
        peer_list = cli_context.get_client().list_keepers()
    except MefsError as e:
        fail("Failed to list keepers", e)

    table = Table(title="Keepers")
    table.add_column("Peer", style="cyan")
    table.add_column("State", style="green")
    for peer in peer_list.peers:
        table.add_row(peer.peer_id, "connected" if peer.connected else "unconnected")
    console.print(table)


@cli.command()
@pass_cli_context
def peers(cli_context):
    """List the gateway's swarm connections."""
    try:
        conns = cli_context.get_client().swarm_peers()
    except MefsError as e:
        fail("Failed to list peers", e)

    if not conns:
        console.print("No peers connected.")
        return
    table = Table(title="Swarm Peers")
    table.add_column("Peer", style="cyan")
    table.add_column("Address", style="green")
    table.add_column("Latency", style="yellow")
    for conn in conns:
        table.add_row(conn.peer, conn.addr, conn.latency)
    console.print(table)


@cli.command(name="create-user")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True,
              help="Password protecting the new user's key")
@pass_cli_context
def create_user(cli_context, password):
    """Create a new user on the gateway's node."""
    try:
        user = cli_context.get_client().create_user(password=password)
    except MefsError as e:
        fail("Failed to create user", e)
    console.print(f"✅ User created: {user.address}")
    console.print("[yellow]Store the private key safely; it is shown only once.[/yellow]")
    console.print(user.sk)


if __name__ == "__main__":
    cli()
