"""Click-based CLI for pricewatch.

Thin wrapper around library modules. Every operation delegates to the
storage, cache, source or tracking modules.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import datetime, timezone

import click
from rich.console import Console
from rich.table import Table

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call."""
    if "config" not in ctx.obj:
        from pricewatch.core import load_config

        ctx.obj["config"] = load_config(config_path=ctx.obj.get("config_path"))
    return ctx.obj["config"]


def _format_ts(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _parse_timestamp(value: str | None) -> int | None:
    """Accept unix seconds or an ISO-8601 datetime (naive means UTC)."""
    if value is None:
        return None
    if value.isdigit():
        return int(value)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise click.BadParameter(
            f"'{value}' is neither unix seconds nor an ISO-8601 datetime",
            param_hint="--at",
        )
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


async def _open_storage(config):
    """Open the durable store and the cache engine."""
    from pricewatch.cache import RecencyCache, create_cache_backend
    from pricewatch.storage import create_store

    store = await create_store(config.storage)
    try:
        backend = await create_cache_backend(config.cache)
    except Exception:
        await store.close()
        raise
    return store, backend, RecencyCache(backend, config.cache)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="PRICEWATCH_CONFIG",
    default=None,
    help="Path to pricewatch.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable debug logging.",
)
@click.version_option(package_name="pricewatch")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """pricewatch: asset price tracker with nearest-timestamp lookup."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", type=str, default=None, help="Bind address (default: api.host).")
@click.option("--port", "-p", type=int, default=None, help="Port number (default: api.port).")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Start the REST API server and the collectors."""
    import uvicorn

    config = _load_config(ctx)
    host = host or config.api.host
    port = port or config.api.port

    from pricewatch.api.app import create_app

    console.print(f"Starting pricewatch API on [bold]{host}:{port}[/bold]")
    console.print(f"API docs: http://{host}:{port}/docs")

    uvicorn.run(create_app(config=config), host=host, port=port)


# ---------------------------------------------------------------------------
# price
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("asset")
@click.option("--at", "at", type=str, default=None, help="Unix seconds or ISO-8601. Default: now.")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    help="Output format.",
)
@click.pass_context
def price(ctx: click.Context, asset: str, at: str | None, output_format: str) -> None:
    """Look up the stored price of ASSET nearest to a timestamp."""
    from pricewatch.core import InvalidAsset, PriceNotFound, PricewatchError, normalize_asset

    try:
        symbol = normalize_asset(asset)
    except InvalidAsset as exc:
        raise click.BadParameter(str(exc), param_hint="ASSET") from exc
    config = _load_config(ctx)
    timestamp = _parse_timestamp(at)
    if timestamp is None:
        timestamp = int(datetime.now(tz=timezone.utc).timestamp())

    async def _run():
        from pricewatch.tracking import PriceResolver

        store, backend, cache = await _open_storage(config)
        try:
            return await PriceResolver(store, cache).resolve(symbol, timestamp)
        finally:
            await backend.close()
            await store.close()

    try:
        sample = _run_async(_run())
    except PriceNotFound:
        console.print(f"[red]No price found for {symbol}[/red]")
        raise SystemExit(1)
    except PricewatchError as exc:
        console.print(f"[red]Lookup failed: {exc}[/red]")
        raise SystemExit(1)

    if output_format == "json":
        click.echo(
            json.dumps(
                {
                    "asset": symbol,
                    "price": sample.price,
                    "timestamp": timestamp,
                    "sample_timestamp": sample.timestamp,
                },
                indent=2,
            )
        )
        return

    table = Table(title=f"{symbol} price")
    table.add_column("Field", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Price", f"{sample.price}")
    table.add_row("Queried at", _format_ts(timestamp))
    table.add_row("Sample time", _format_ts(sample.timestamp))
    table.add_row("Offset", f"{sample.timestamp - timestamp:+d}s")
    console.print(table)


# ---------------------------------------------------------------------------
# assets
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def assets(ctx: click.Context) -> None:
    """Show which assets have stored samples and over what span."""
    from pricewatch.storage import create_store

    config = _load_config(ctx)

    async def _run():
        store = await create_store(config.storage)
        try:
            return await store.list_assets()
        finally:
            await store.close()

    coverage = _run_async(_run())
    if not coverage:
        console.print("[yellow]No samples stored yet. Start tracking an asset first.[/yellow]")
        return

    table = Table(title="Stored samples")
    table.add_column("Asset", style="bold")
    table.add_column("Samples", justify="right")
    table.add_column("First")
    table.add_column("Last")
    for row in coverage:
        table.add_row(
            row.asset,
            str(row.samples),
            _format_ts(row.first_timestamp),
            _format_ts(row.last_timestamp),
        )
    console.print(table)


# ---------------------------------------------------------------------------
# symbols
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def symbols(ctx: click.Context) -> None:
    """List the asset symbols the price source can quote."""
    from pricewatch.core import SourceError
    from pricewatch.source import KrakenPriceSource

    config = _load_config(ctx)

    async def _run():
        async with KrakenPriceSource(config.source) as source:
            return await source.supported_assets()

    try:
        supported = _run_async(_run())
    except SourceError as exc:
        console.print(f"[red]Price source unavailable: {exc}[/red]")
        raise SystemExit(1)

    click.echo("\n".join(supported))
    console.print(
        f"[green]✓[/green] {len(supported)} symbols quoted in {config.source.quote_currency}"
    )


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show store and cache health."""
    config = _load_config(ctx)

    async def _run():
        store, backend, cache = await _open_storage(config)
        try:
            return {
                "store_ok": await store.health_check(),
                "cache_ok": await backend.ping(),
                "total_samples": await store.count_samples(),
                "cached_assets": await cache.cached_assets(),
            }
        finally:
            await backend.close()
            await store.close()

    stats = _run_async(_run())

    table = Table(title="pricewatch status")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Database path", config.storage.sqlite_path)
    table.add_row("Store reachable", "yes" if stats["store_ok"] else "no")
    table.add_row("Stored samples", str(stats["total_samples"]))
    table.add_section()
    table.add_row("Cache backend", config.cache.backend.value)
    table.add_row("Cache reachable", "yes" if stats["cache_ok"] else "no")
    table.add_row(
        "Cached assets",
        f"{len(stats['cached_assets'])}/{config.cache.max_assets}",
    )
    console.print(table)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
