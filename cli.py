# Simple CLI for the Swap Router
import asyncio
import click

from app.containers import AppContainer
from core.logging import configure_logging


@click.group()
def cli():
    """Swap Router CLI"""
    pass


@cli.command()
def api():
    """Run the API server with the order workers"""
    click.echo("🚀 Starting Swap Router API server...")
    from api.main import run as run_api
    run_api()


@cli.command("init-db")
@click.option("--wait", default=30, show_default=True, help="Seconds to wait for the database")
def init_db(wait):
    """Create the order tables"""
    container = AppContainer()
    configure_logging(container.settings())
    db_manager = container.db_manager()

    async def _init():
        try:
            await db_manager.wait_for_ready(timeout=wait)
            await db_manager.init()
        finally:
            await db_manager.shutdown()

    asyncio.run(_init())
    click.echo("✅ Database schema ready")


if __name__ == "__main__":
    cli()
