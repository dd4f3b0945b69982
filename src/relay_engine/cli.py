"""Typer CLI for Relay-Engine."""

import asyncio
import signal

import typer
from rich.console import Console

app = typer.Typer(name="relay", help="Relay-Engine: outbound webhook delivery")
console = Console()


def _build_engine():
    from relay_engine.common.config import get_settings
    from relay_engine.common.logging import setup_logging
    from relay_engine.engine import DeliveryEngine

    settings = get_settings()
    setup_logging(settings.log_level)
    return DeliveryEngine.build(settings)


async def _with_engine(job):
    engine = _build_engine()
    await engine.db.init()
    await engine.db.create_all()
    try:
        return await job(engine)
    finally:
        await engine.aclose()
        await engine.db.close()


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind host"),
    port: int = typer.Option(8080, help="Bind port"),
):
    """Start the Relay-Engine API server."""
    import uvicorn
    from relay_engine.app import create_app

    console.print(f"[bold green]Starting Relay-Engine on {host}:{port}[/bold green]")
    uvicorn.run(create_app(), host=host, port=port)


@app.command()
def pump(
    limit: int = typer.Option(None, help="Deliveries to claim (default: RELAY_PUMP_BATCH_SIZE)"),
):
    """Run one pump cycle over due deliveries."""
    result = asyncio.run(_with_engine(lambda engine: engine.pump.pump(limit)))
    console.print(
        f"picked [bold]{result.picked}[/bold]  "
        f"triggered [bold green]{result.triggered}[/bold green]  "
        f"failed [bold red]{result.failed}[/bold red]"
    )
    for outcome, count in sorted(result.outcomes.items()):
        console.print(f"  {outcome}: {count}")


@app.command()
def reap(
    stale_after: float = typer.Option(
        None, help="Seconds in flight before recovery (default: RELAY_REAPER_STALE_AFTER_SECONDS)",
    ),
):
    """Recover deliveries stuck in flight."""
    result = asyncio.run(_with_engine(lambda engine: engine.reaper.reap(stale_after)))
    console.print(
        f"recovered [bold green]{result.recovered}[/bold green]  "
        f"failed [bold red]{result.failed}[/bold red]"
    )


@app.command()
def worker():
    """Run the pump and reaper on their configured intervals until interrupted."""

    async def run(engine):
        scheduler = engine.scheduler()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, scheduler.stop)
            except NotImplementedError:
                pass
        console.print("[bold green]Relay worker running[/bold green] (Ctrl+C to stop)")
        await scheduler.run()

    asyncio.run(_with_engine(run))


@app.command("retry")
def retry_delivery(
    delivery_id: str = typer.Argument(None, help="Delivery to reset"),
    endpoint: str = typer.Option(None, "--endpoint", help="Reset every FAILED delivery of this endpoint"),
):
    """Reset a delivery (or all failed deliveries of an endpoint) for another round of attempts."""
    from relay_engine.common.exceptions import RelayError
    from relay_engine.common.models import utcnow

    if not delivery_id and not endpoint:
        console.print("[bold red]Error:[/bold red] pass a delivery id or --endpoint")
        raise typer.Exit(2)

    async def run(engine):
        async with engine.db.get_session() as session:
            if endpoint:
                await engine.registry.require_endpoint(session, endpoint)
                return await engine.store.reset_failed_for_endpoint(session, endpoint, utcnow())
            delivery = await engine.store.reset_for_retry(session, delivery_id, utcnow())
            return delivery.status

    try:
        result = asyncio.run(_with_engine(run))
    except RelayError as e:
        console.print(f"[bold red]{e.code}[/bold red]: {e.message}")
        raise typer.Exit(1)

    if endpoint:
        console.print(f"reset [bold]{result}[/bold] failed deliveries")
    else:
        console.print(f"delivery {delivery_id} is now [bold]{result}[/bold]")


@app.command("rotate-secret")
def rotate_secret(
    endpoint_id: str = typer.Argument(..., help="Endpoint whose secret is replaced"),
):
    """Replace an endpoint's signing secret and print the new one."""
    from relay_engine.common.exceptions import RelayError

    async def run(engine):
        async with engine.db.get_session() as session:
            return await engine.registry.rotate_secret(session, endpoint_id)

    try:
        secret = asyncio.run(_with_engine(run))
    except RelayError as e:
        console.print(f"[bold red]{e.code}[/bold red]: {e.message}")
        raise typer.Exit(1)
    console.print(f"[bold]{secret}[/bold]")


@app.command("gen-secret")
def gen_secret():
    """Generate a signing secret (offline, no DB required)."""
    from relay_engine.signing.signature import generate_secret

    console.print(f"[bold]{generate_secret()}[/bold]")


@app.command()
def health(
    url: str = typer.Option("http://localhost:8080", help="Server URL"),
):
    """Check Relay-Engine server health."""
    import httpx

    try:
        resp = httpx.get(f"{url}/health", timeout=5)
        data = resp.json()
        console.print(f"[bold green]{data['status']}[/bold green] v{data['version']}")
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
