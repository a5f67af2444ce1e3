"""Shared pytest fixtures."""

from __future__ import annotations

import json
import os
import sys
import tempfile
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

# Config classes read the environment at import time.
_DB_DIR = Path(tempfile.mkdtemp(prefix="lsp-prices-test-"))
DATABASE_URL = f"sqlite:///{_DB_DIR / 'test.db'}"
os.environ["DATABASE_URL"] = DATABASE_URL
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["LSP_RETRY_DELAY_SECONDS"] = "0"
os.environ["RATE_LIMIT_DEFAULT_COOLDOWN_SECONDS"] = "0"
os.environ["PRICE_CHANNEL_SIZES"] = "1000000,2000000"

from lsp_pricing import create_app  # noqa: E402
from lsp_pricing.database import get_engine  # noqa: E402
from lsp_pricing.providers import Provider, Quote  # noqa: E402
from lsp_pricing.providers.registry import reset_registry  # noqa: E402
from tests.factories import ScriptedLspsClient  # noqa: E402


@pytest.fixture(scope="session")
def app() -> Iterator:
    """Session-wide Flask application configured with a temporary database."""

    alembic_cfg = Config(str(ROOT_DIR / "alembic.ini"))
    alembic_cfg.set_main_option("sqlalchemy.url", DATABASE_URL)
    command.upgrade(alembic_cfg, "head")

    flask_app = create_app("development")
    flask_app.config.update(TESTING=True)

    yield flask_app

    flask_app.extensions["price_service"].shutdown()
    engine = get_engine()
    engine.dispose()
    command.downgrade(alembic_cfg, "base")


@pytest.fixture()
def client(app):
    """Provide a Flask test client."""

    with app.test_client() as client:
        yield client


@pytest.fixture()
def price_service(app):
    """The app's price service with an empty cache and fresh rate limits."""

    service = app.extensions["price_service"]
    service.store.clear()
    service._memory.clear()
    service._next_refresh_at.clear()
    service.orchestrator.rate_limiter.reset()
    app.extensions["price_refresh_state"] = {}
    yield service
    service.wait_for_background(timeout=5)
    service.store.clear()
    service._memory.clear()
    service._next_refresh_at.clear()


@pytest.fixture()
def lsp_client(price_service, make_provider) -> Iterator[ScriptedLspsClient]:
    """Swap the live LSPS1 client for a scripted one over three test providers."""

    reset_registry([make_provider(name) for name in ("alpha", "beta", "gamma")])
    scripted = ScriptedLspsClient()
    original = price_service.orchestrator._client
    price_service.orchestrator._client = scripted
    yield scripted
    price_service.wait_for_background(timeout=5)
    price_service.orchestrator._client = original


@pytest.fixture(autouse=True)
def _reset_providers():
    reset_registry()
    yield
    reset_registry()


@pytest.fixture()
def make_provider() -> Callable[..., Provider]:
    def _factory(provider_id: str, **overrides) -> Provider:
        defaults = {
            "name": provider_id.title(),
            "urls": (f"https://{provider_id}.example.com/api/v1",),
            "public_key": "02" + "ab" * 32,
        }
        defaults.update(overrides)
        return Provider(id=provider_id, **defaults)

    return _factory


@pytest.fixture()
def make_quote() -> Callable[..., Quote]:
    def _factory(
        provider_id: str,
        fee_msat: int = 12_000,
        *,
        channel_size_sat: int = 1_000_000,
        timestamp: datetime | None = None,
    ) -> Quote:
        return Quote.live(
            provider_id=provider_id,
            provider_name=provider_id.title(),
            channel_size_sat=channel_size_sat,
            total_fee_msat=fee_msat,
            timestamp=timestamp or datetime(2026, 10, 1, 12, 0, tzinfo=UTC),
        )

    return _factory


@pytest.fixture(scope="session")
def fixtures_dir() -> Path:
    """Return the path to bundled JSON fixtures."""

    return ROOT_DIR / "tests" / "fixtures"


@pytest.fixture()
def load_json_fixture(fixtures_dir: Path) -> Callable[[str], dict]:
    """Load a JSON fixture by filename."""

    def _loader(filename: str) -> dict:
        path = fixtures_dir / filename
        with path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    return _loader
