"""Runtime configuration loaded from an options JSON file."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import voluptuous as vol

from .const import (
    DEFAULT_HASH_ALGORITHM,
    DEFAULT_KEY_PREFIX,
    DEFAULT_OPTIONS_PATH,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ENV_OPTIONS_PATH,
)

_LOGGER = logging.getLogger(__name__)

_POSITIVE = vol.All(vol.Coerce(float), vol.Range(min=0, min_included=False))

CONFIG_SCHEMA = vol.Schema(
    {
        vol.Optional("manifest_path", default=None): vol.Any(None, str),
        vol.Optional("public_path", default=""): str,
        vol.Optional("base_url", default=None): vol.Any(None, str),
        vol.Optional("storage_path", default=None): vol.Any(None, str),
        vol.Optional("storage_key_prefix", default=DEFAULT_KEY_PREFIX): str,
        vol.Optional("load_timeout", default=None): vol.Any(None, _POSITIVE),
        vol.Optional("request_timeout", default=DEFAULT_REQUEST_TIMEOUT_SECONDS): _POSITIVE,
        vol.Optional("verify_hashes", default=False): vol.Boolean(),
        vol.Optional("hash_algorithm", default=DEFAULT_HASH_ALGORITHM): vol.In(
            ["md5", "sha1", "sha256", "sha384", "sha512"]
        ),
        vol.Optional("strict_datatypes", default=False): vol.Boolean(),
    },
    extra=vol.REMOVE_EXTRA,
)


@dataclass(frozen=True)
class RuntimeConfig:
    manifest_path: str | None = None
    public_path: str = ""
    base_url: str | None = None
    storage_path: str | None = None
    storage_key_prefix: str = DEFAULT_KEY_PREFIX
    load_timeout: float | None = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    verify_hashes: bool = False
    hash_algorithm: str = DEFAULT_HASH_ALGORITHM
    strict_datatypes: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RuntimeConfig":
        return cls(**CONFIG_SCHEMA(dict(data)))

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def load_config(path: str | Path | None = None) -> RuntimeConfig:
    """Load options JSON; a missing file yields the defaults.

    ``PAGE_RUNTIME_OPTIONS`` overrides the default location.
    """
    if path is None:
        path = os.environ.get(ENV_OPTIONS_PATH, DEFAULT_OPTIONS_PATH)
    path = Path(path)

    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh) or {}
    except FileNotFoundError:
        _LOGGER.debug("No options file at %s, using defaults", path)
        data = {}

    if not isinstance(data, dict):
        raise vol.Invalid(f"Options file {path} must contain a JSON object")
    return RuntimeConfig.from_dict(data)
