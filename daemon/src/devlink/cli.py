"""CLI entry point for devlink."""

import asyncio
from pathlib import Path

import click

from devlink import __version__
from devlink.config import Config, load_config
from devlink.errors import DevlinkError, SocketFactoryError
from devlink.logging import setup_logging


def _socket_factory(config: Config, factory: str | None):
    from devlink.protocol import load_socket_factory

    import_path = factory or config.socket_factory
    if not import_path:
        raise click.UsageError(
            "No socket factory configured. Set socket_factory in the config "
            "file or pass --factory module:attribute."
        )
    try:
        return load_socket_factory(import_path)
    except SocketFactoryError as e:
        raise click.ClickException(str(e))


def _manager(ctx: click.Context, factory: str | None = None):
    from devlink.linking.manager import LinkManager

    config = ctx.obj["config"]
    return LinkManager(_socket_factory(config, factory), config)


factory_option = click.option(
    "--factory",
    "-f",
    default=None,
    help="Socket factory import path (module:attribute).",
)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file.",
)
@click.option(
    "--sessions-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Override the credential store directory.",
)
@click.pass_context
def main(ctx: click.Context, config: Path | None, sessions_dir: Path | None) -> None:
    """devlink - link devices by pairing code or QR code."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config(config)
    if sessions_dir is not None:
        ctx.obj["config"].sessions_dir = str(sessions_dir)
    ctx.obj["logger"] = setup_logging(ctx.obj["config"])


@main.command()
@click.option("--host", default=None, help="Bind address.")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on.")
@factory_option
@click.pass_context
def serve(
    ctx: click.Context, host: str | None, port: int | None, factory: str | None
) -> None:
    """Start the HTTP server."""
    from devlink.server import LinkServer

    config = ctx.obj["config"]
    host = host or config.bind_address
    port = config.port if port is None else port
    server = LinkServer(_manager(ctx, factory))

    async def _serve():
        try:
            await server.start(host, port)
            click.echo(f"devlink listening on http://{host}:{server.get_port()}")
            click.echo("Press Ctrl+C to stop")
            await asyncio.Event().wait()
        finally:
            await server.close()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        click.echo("\nShutting down...")


@main.command()
@click.argument("number")
@factory_option
@click.pass_context
def pair(ctx: click.Context, number: str, factory: str | None) -> None:
    """Request a pairing code for NUMBER."""
    manager = _manager(ctx, factory)

    async def _pair():
        try:
            result = await manager.pairing.start(number)
            click.echo(f"Pairing code: {result.code}")
            click.echo(f"Session: {result.session_id}")
            click.echo("Enter the code on your device, waiting for it to link...")
            session = manager.get_session(result.session_id)
            while session is not None and not session.cleaned:
                await asyncio.sleep(0.5)
        finally:
            await manager.stop()

    try:
        asyncio.run(_pair())
    except DevlinkError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)


@main.command()
@click.option(
    "--png",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Save the QR code as a PNG instead of printing it.",
)
@factory_option
@click.pass_context
def qr(ctx: click.Context, png: Path | None, factory: str | None) -> None:
    """Generate a linking QR code."""
    from devlink.linking.qr_renderer import QrRenderer

    manager = _manager(ctx, factory)

    async def _qr():
        try:
            result = await manager.qr.start()
            renderer = QrRenderer(result.qr)
            if png is not None:
                renderer.to_png(str(png))
                click.echo(f"QR code saved to: {png}")
            else:
                click.echo(renderer.to_terminal())
            click.echo(f"Session: {result.session_id}")
            click.echo("Waiting for device to scan...")
            session = manager.get_session(result.session_id)
            while session is not None and not session.cleaned:
                await asyncio.sleep(0.5)
        finally:
            await manager.stop()

    try:
        asyncio.run(_qr())
    except DevlinkError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)


@main.command()
@click.argument("session_id")
@click.pass_context
def status(ctx: click.Context, session_id: str) -> None:
    """Show the on-disk status of SESSION_ID."""
    from devlink.credentials import CredentialRoot
    from devlink.ids import IdGenerator

    config = ctx.obj["config"]
    report = CredentialRoot(config.sessions_dir).status(session_id)
    if "error" in report:
        click.echo(f"Error: {report['error']}", err=True)
        raise SystemExit(1)
    if not report["exists"]:
        click.echo("Session: not found")
        return

    info = report.get("info")
    click.echo(f"Session: {'active' if report['active'] else 'pending'}")
    if info:
        click.echo(f"User: {info.get('user')}")
        click.echo(f"Linked: {info.get('timestamp')}")

    # Stores created outside devlink carry no timestamp in their name
    ids = IdGenerator(prefix=config.ids.prefix, version=config.ids.version)
    if ids.validate_session_id(session_id):
        expired = ids.is_session_expired(session_id, config.ids.session_timeout_ms)
        click.echo(f"Expired: {'yes' if expired else 'no'}")


@main.command()
@click.option(
    "--max-age",
    type=float,
    default=None,
    help="Remove stores older than this many seconds.",
)
@click.pass_context
def cleanup(ctx: click.Context, max_age: float | None) -> None:
    """Remove stale credential stores."""
    from devlink.credentials import CredentialRoot

    config = ctx.obj["config"]
    root = CredentialRoot(config.sessions_dir)
    max_age = config.cleanup.stale_after if max_age is None else max_age

    cleaned = root.remove_stores(root.find_stale(max_age))
    click.echo(f"Cleaned {cleaned} old sessions")


@main.command("gen-id")
@click.option("--count", "-n", type=int, default=1, help="How many IDs.")
@click.pass_context
def gen_id(ctx: click.Context, count: int) -> None:
    """Generate session IDs."""
    from devlink.ids import IdGenerator

    config = ctx.obj["config"]
    ids = IdGenerator(prefix=config.ids.prefix, version=config.ids.version)
    for session_id in ids.generate_batch(count):
        click.echo(session_id)


@main.command()
def version() -> None:
    """Show version."""
    click.echo(f"devlink version {__version__}")


if __name__ == "__main__":
    main()
