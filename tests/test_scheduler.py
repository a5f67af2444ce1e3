from __future__ import annotations

from flask import Flask

from lsp_pricing.errors import ValidationError
from lsp_pricing.providers import LspError, LspErrorKind
from lsp_pricing.services.scheduler import (
    REFRESH_STATE_KEY,
    init_scheduler,
    run_scheduled_refresh,
)


def test_scheduled_refresh_covers_every_configured_size(app, price_service, lsp_client):
    lsp_client.script("alpha", 12_000)
    lsp_client.script("beta", LspError(LspErrorKind.RATE_LIMITED, "429"))
    lsp_client.script("gamma", 11_000)

    live_counts = run_scheduled_refresh(app)

    assert live_counts == {1_000_000: 2, 2_000_000: 2}
    assert price_service.store.available_channel_sizes() == [1_000_000, 2_000_000]
    state = app.extensions[REFRESH_STATE_KEY]
    assert state["last_run"] is not None
    assert state["last_success"] == state["last_run"]
    assert state["last_failure"] is None
    assert state["live_counts"] == live_counts


def test_scheduled_refresh_records_rejected_sizes(app, price_service, lsp_client, monkeypatch):
    def reject(size, bypass_rate_limit=False):
        raise ValidationError("out of range")

    monkeypatch.setattr(price_service, "force_refresh", reject)

    assert run_scheduled_refresh(app) == {}
    state = app.extensions[REFRESH_STATE_KEY]
    assert state["last_failure"] == state["last_run"]
    assert "last_success" not in state


def test_scheduled_refresh_without_service_is_skipped():
    app = Flask(__name__)

    assert run_scheduled_refresh(app) == {}


def test_scheduler_disabled_by_config():
    app = Flask(__name__)
    app.config["SCHEDULER_ENABLED"] = False

    assert init_scheduler(app) is None
    assert app.extensions[REFRESH_STATE_KEY] == {}


def test_scheduler_registers_refresh_job():
    app = Flask(__name__)
    app.config.update(SCHEDULER_ENABLED=True, PRICES_REFRESH_CRON="*/5 * * * *")

    scheduler = init_scheduler(app)
    try:
        job = scheduler.get_job("refresh_prices")
        assert job is not None
        assert job.max_instances == 1
        assert job.coalesce is True
        assert init_scheduler(app) is scheduler
    finally:
        scheduler.shutdown(wait=False)
