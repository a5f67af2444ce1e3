"""Registry of the configured Lightning Service Providers."""

from __future__ import annotations

from typing import Dict, Iterable, List

from .base import Provider, ProviderError

DEFAULT_PROVIDERS: tuple[Provider, ...] = (
    Provider(
        id="olympus",
        name="Olympus",
        urls=("https://lsps1.lnolymp.us/api/v1",),
        public_key="031b301307574bbe9b9ac7b79cbe1700e31e544513eae0b5d7497483083f99e581",
        cooldown_seconds=60,
    ),
    Provider(
        id="lnserver",
        name="LNServer Wave",
        urls=(
            "https://www.lnserver.com/lsp/wave",
            "https://www.lnserver.com/lsp/wave/api/v1",
        ),
        public_key="02b4552a7a85274e4da01a7c71ca57407181752e8568b31d51f13c110a2941dce3",
        cooldown_seconds=120,
    ),
    Provider(
        id="megalith",
        name="Megalith",
        urls=("https://lsps1.megalith.com/api/v1",),
        public_key="03e30fda71887a916ef5548a4d02b06fe04aaa1a8de9e24134ce7f139cf79d7579",
        cooldown_seconds=60,
    ),
    Provider(
        id="flashsats",
        name="Flashsats",
        urls=("https://lsps1.flashsats.com/api/v1",),
        public_key="038a9e56512ec98da2b5789761f7af8f280baf98a09282360cd6ff1381b5e889bf",
        cooldown_seconds=300,
    ),
)

_PROVIDERS: Dict[str, Provider] = {}


def register_provider(provider: Provider) -> None:
    """Register (or replace) a provider under its id."""

    _PROVIDERS[provider.id] = provider


def unregister_provider(provider_id: str) -> None:
    """Remove a provider; primarily for testing."""

    _PROVIDERS.pop(provider_id.lower(), None)


def list_providers() -> List[str]:
    """Return registered provider ids in configuration order."""

    return list(_PROVIDERS.keys())


def get_provider(provider_id: str) -> Provider:
    """Return the provider registered under ``provider_id``."""

    try:
        return _PROVIDERS[(provider_id or "").strip().lower()]
    except KeyError as exc:
        available = ", ".join(list_providers()) or "none registered"
        raise ProviderError(
            f"Unknown provider '{provider_id}'. Available providers: {available}"
        ) from exc


def get_active_providers(disabled: Iterable[str] = ()) -> List[Provider]:
    """Return active providers, minus any ids listed in ``disabled``."""

    excluded = {item.strip().lower() for item in disabled if item and item.strip()}
    return [
        provider
        for provider in _PROVIDERS.values()
        if provider.active and provider.id not in excluded
    ]


def init_providers(app) -> List[Provider]:
    """Attach the active provider list to the Flask app."""

    disabled = str(app.config.get("LSP_DISABLED_PROVIDERS") or "").split(",")
    providers = get_active_providers(disabled)
    app.extensions["lsp_providers"] = providers
    return providers


def reset_registry(providers: Iterable[Provider] | None = None) -> None:
    """Reset provider registry; useful for tests."""

    _PROVIDERS.clear()
    for provider in providers if providers is not None else DEFAULT_PROVIDERS:
        register_provider(provider)


reset_registry()
