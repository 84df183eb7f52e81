"""Configuration loading, credentials and the collection registry."""

from __future__ import annotations

import dataclasses
import json
import os
from dataclasses import dataclass
from pathlib import Path

import keyring

from streamingest.exceptions import ConfigurationError
from streamingest.models import IngestConfig


SERVICE_NAME = "streamingest-cloudflare"
TOKEN_KEY = "api_token"
ACCOUNT_KEY = "account_id"


@dataclass(frozen=True)
class Credentials:
    """Cloudflare account id and API token."""

    account_id: str
    api_token: str


def get_api_token() -> str:
    """Get the API token: system keyring first, then CLOUDFLARE_API_TOKEN.

    Raises:
        ConfigurationError: If no token is found anywhere.
    """
    api_token = keyring.get_password(SERVICE_NAME, TOKEN_KEY)
    if api_token:
        return api_token

    api_token = os.environ.get("CLOUDFLARE_API_TOKEN")
    if api_token:
        return api_token

    raise ConfigurationError(
        "Cloudflare API token not found.\n"
        "Set it with: streamingest config set api-token YOUR_TOKEN\n"
        "Or: export CLOUDFLARE_API_TOKEN=your-token"
    )


def get_account_id() -> str:
    """Get the account id: CLOUDFLARE_ACCOUNT_ID first, then the keyring."""
    account_id = os.environ.get("CLOUDFLARE_ACCOUNT_ID")
    if account_id:
        return account_id

    account_id = keyring.get_password(SERVICE_NAME, ACCOUNT_KEY)
    if account_id:
        return account_id

    raise ConfigurationError(
        "Cloudflare account id not found.\n"
        "Set it with: streamingest config set account-id YOUR_ACCOUNT_ID\n"
        "Or: export CLOUDFLARE_ACCOUNT_ID=your-account-id"
    )


def get_credentials() -> Credentials:
    """Resolve both credentials, raising ConfigurationError on the first gap."""
    return Credentials(account_id=get_account_id(), api_token=get_api_token())


class CollectionRegistry:
    """Explicit mapping from collection key to its ingestion configuration.

    Built once at startup; lookups for unknown keys raise
    :class:`ConfigurationError`.
    """

    def __init__(self, collections: dict[str, IngestConfig] | None = None) -> None:
        self._collections: dict[str, IngestConfig] = dict(collections or {})

    def register(self, key: str, config: IngestConfig) -> None:
        self._collections[key] = config

    def resolve(self, key: str) -> IngestConfig:
        try:
            return self._collections[key]
        except KeyError:
            raise ConfigurationError(
                f"Collection {key!r} is not registered for video ingestion"
            ) from None

    def __contains__(self, key: object) -> bool:
        return key in self._collections

    def __len__(self) -> int:
        return len(self._collections)

    @property
    def keys(self) -> list[str]:
        return sorted(self._collections)


def _recognised(data: dict) -> dict:
    field_names = {f.name for f in dataclasses.fields(IngestConfig)}
    kwargs = {k: v for k, v in data.items() if k in field_names}
    if "retry_delays" in kwargs:
        kwargs["retry_delays"] = tuple(kwargs["retry_delays"])
    return kwargs


def load_ingest_config(
    config_path: Path | None = None,
) -> tuple[IngestConfig, CollectionRegistry]:
    """Load ingestion configuration from JSON, falling back to defaults.

    Reads ``config/ingest_config.json`` when *config_path* is ``None``.
    Top-level keys matching :class:`IngestConfig` fields override the
    defaults.  The ``collections`` key is either a list of collection keys
    (each using the global config) or a mapping of key to per-collection
    overrides.  A mapping value of ``true`` also means the global config.

    Args:
        config_path: Optional explicit path to ingest_config.json.

    Returns:
        Tuple of the global config and the collection registry.
    """
    if config_path is None:
        config_path = Path("config/ingest_config.json")

    data: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            data = json.load(f)

    base_kwargs = _recognised(data)
    config = IngestConfig(**base_kwargs)

    registry = CollectionRegistry()
    collections = data.get("collections", [])
    if isinstance(collections, list):
        for key in collections:
            registry.register(str(key), config)
    elif isinstance(collections, dict):
        for key, overrides in collections.items():
            if overrides is True or overrides is None:
                overrides = {}
            elif not isinstance(overrides, dict):
                raise ConfigurationError(
                    f"Collection {key!r} in {config_path} must map to true or an object"
                )
            merged = {**base_kwargs, **_recognised(overrides)}
            registry.register(str(key), IngestConfig(**merged))
    else:
        raise ConfigurationError(
            f"'collections' in {config_path} must be a list or a mapping"
        )

    return config, registry
