"""CLI for refreshing LSP prices on demand."""

from __future__ import annotations

import click
from flask import current_app
from flask.cli import with_appcontext

from config import parse_channel_sizes
from lsp_pricing.errors import APIError
from lsp_pricing.providers import Provenance
from lsp_pricing.services.price_service import get_price_service


@click.command("fetch-prices")
@click.option(
    "--channel-size",
    "channel_sizes",
    type=int,
    multiple=True,
    help="Channel size in sat; repeat for several. Defaults to PRICE_CHANNEL_SIZES.",
)
@click.option(
    "--bypass-rate-limit",
    is_flag=True,
    default=False,
    help="Skip per-provider cooldowns for this run.",
)
@with_appcontext
def fetch_prices(channel_sizes: tuple[int, ...], bypass_rate_limit: bool) -> None:
    """Force-refresh quotes from every active provider and store them."""

    service = get_price_service(current_app)
    sizes = list(channel_sizes) or parse_channel_sizes(
        current_app.config.get("PRICE_CHANNEL_SIZES", "")
    )
    for size in sizes:
        try:
            quotes = service.force_refresh(size, bypass_rate_limit=bypass_rate_limit)
        except APIError as exc:
            raise click.ClickException(exc.message) from exc
        click.echo(f"{size} sat:")
        for quote in quotes:
            if quote.source is Provenance.UNAVAILABLE:
                detail = f"unavailable ({quote.error_kind.value if quote.error_kind else 'unknown'})"
            else:
                detail = f"{quote.total_fee_msat} msat [{quote.source.value}]"
            click.echo(f"  {quote.provider_name}: {detail}")
    click.echo("Price refresh completed.")
