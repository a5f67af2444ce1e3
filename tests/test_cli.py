from __future__ import annotations

from lsp_pricing.providers import LspError, LspErrorKind


def test_fetch_prices_command_refreshes_requested_size(app, price_service, lsp_client):
    lsp_client.script("alpha", 12_000)
    lsp_client.script("beta", LspError(LspErrorKind.WHITELIST_REQUIRED, "not whitelisted"))
    lsp_client.script("gamma", 11_000)

    result = app.test_cli_runner().invoke(args=["fetch-prices", "--channel-size", "1000000"])

    assert result.exit_code == 0, result.output
    assert "1000000 sat:" in result.output
    assert "Alpha: 12000 msat [live]" in result.output
    assert "Beta: unavailable (WHITELIST_REQUIRED)" in result.output
    assert result.output.strip().endswith("Price refresh completed.")
    assert price_service.store.available_channel_sizes() == [1_000_000]


def test_fetch_prices_defaults_to_configured_sizes(app, price_service, lsp_client):
    for provider_id in ("alpha", "beta", "gamma"):
        lsp_client.script(provider_id, 10_000)

    result = app.test_cli_runner().invoke(args=["fetch-prices", "--bypass-rate-limit"])

    assert result.exit_code == 0, result.output
    assert "1000000 sat:" in result.output
    assert "2000000 sat:" in result.output


def test_fetch_prices_rejects_out_of_range_size(app, price_service, lsp_client):
    result = app.test_cli_runner().invoke(args=["fetch-prices", "--channel-size", "5"])

    assert result.exit_code == 1
    assert "must be between" in result.output
    assert lsp_client.calls == []
