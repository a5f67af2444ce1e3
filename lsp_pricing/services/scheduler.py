"""Cron-driven refresh of every configured channel size."""

from __future__ import annotations

import atexit
import logging
from datetime import UTC, datetime
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from flask import Flask

from config import parse_channel_sizes
from lsp_pricing.errors import APIError
from lsp_pricing.providers import Provenance

logger = logging.getLogger(__name__)

SCHEDULER_EXT_KEY = "apscheduler"
REFRESH_STATE_KEY = "price_refresh_state"
REFRESH_JOB_ID = "refresh_prices"


def ensure_refresh_state(app: Flask) -> dict[str, Any]:
    """Return the mutable refresh bookkeeping dict, creating it when missing."""

    state = app.extensions.get(REFRESH_STATE_KEY)
    if not isinstance(state, dict):
        state = app.extensions[REFRESH_STATE_KEY] = {}
    return state


def run_scheduled_refresh(app: Flask) -> dict[int, int]:
    """Force-refresh every configured channel size; return live counts per size."""

    from lsp_pricing.services.price_service import PRICE_SERVICE_EXT_KEY

    with app.app_context():
        service = app.extensions.get(PRICE_SERVICE_EXT_KEY)
        if service is None:
            logger.warning("Scheduled refresh skipped: price service not initialised.")
            return {}

        live_counts: dict[int, int] = {}
        rejected: list[int] = []
        for size in parse_channel_sizes(app.config.get("PRICE_CHANNEL_SIZES", "")):
            try:
                quotes = service.force_refresh(size, bypass_rate_limit=True)
            except APIError as exc:
                rejected.append(size)
                logger.error("Scheduled refresh for %s sat rejected: %s", size, exc.message)
                continue
            live_counts[size] = sum(1 for quote in quotes if quote.source is Provenance.LIVE)

        finished_at = datetime.now(UTC)
        state = ensure_refresh_state(app)
        state.update(last_run=finished_at, live_counts=live_counts)
        if rejected:
            state["last_failure"] = finished_at
        else:
            state.update(last_success=finished_at, last_failure=None)

        logger.info(
            "Scheduled refresh finished: %s sizes, %s live quotes",
            len(live_counts),
            sum(live_counts.values()),
        )
        return live_counts


def init_scheduler(app: Flask) -> BackgroundScheduler | None:
    """Start the background refresh job unless ``SCHEDULER_ENABLED`` is off."""

    ensure_refresh_state(app)
    if not app.config.get("SCHEDULER_ENABLED", True):
        logger.info("Price refresh scheduler disabled.")
        return None

    existing = app.extensions.get(SCHEDULER_EXT_KEY)
    if existing is not None:
        return existing

    cron_expr = app.config.get("PRICES_REFRESH_CRON", "*/10 * * * *")
    scheduler = BackgroundScheduler(timezone=app.config.get("SCHEDULER_TIMEZONE", "UTC"))
    # One refresh at a time; missed runs collapse into the next one.
    scheduler.add_job(
        run_scheduled_refresh,
        trigger=CronTrigger.from_crontab(cron_expr),
        args=[app],
        id=REFRESH_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    app.extensions[SCHEDULER_EXT_KEY] = scheduler
    atexit.register(_shutdown, scheduler)

    logger.info("Price refresh scheduled with cron '%s'", cron_expr)
    return scheduler


def _shutdown(scheduler: BackgroundScheduler) -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
