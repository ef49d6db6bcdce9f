"""Bundle manifest resolver.

The build pipeline emits a JSON manifest mapping bundle names to the
ordered list of assets that make up each bundle::

    {
      "publicPath": "/static/",
      "bundles": {
        "vendor": [{"url": "vendor.js", "kind": "script", "contentHash": "9f2c"}],
        "cart":   [{"url": "vendor.js", "kind": "script"},
                   {"url": "cart.js", "kind": "script"},
                   {"url": "cart.css", "kind": "style"}]
      }
    }

The bare ``{name: [assets...]}`` mapping (without ``bundles``/``publicPath``)
is accepted as well. Asset order inside a bundle is significant: dependency
chunks come first.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any

import voluptuous as vol

from .errors import ManifestError, UnknownBundleError

_LOGGER = logging.getLogger(__name__)


class AssetKind(StrEnum):
    SCRIPT = "script"
    STYLE = "style"


@dataclass(frozen=True, slots=True)
class AssetDescriptor:
    """One file of a bundle."""

    url: str
    kind: AssetKind = AssetKind.SCRIPT
    content_hash: str = ""

    def as_dict(self) -> dict[str, str]:
        return {"url": self.url, "kind": self.kind.value, "contentHash": self.content_hash}


ASSET_SCHEMA = vol.Schema(
    {
        vol.Required("url"): vol.All(str, vol.Length(min=1)),
        vol.Optional("kind"): vol.In([k.value for k in AssetKind]),
        vol.Optional("contentHash", default=""): str,
    },
    extra=vol.ALLOW_EXTRA,
)

BUNDLES_SCHEMA = vol.Schema({str: [ASSET_SCHEMA]})

MANIFEST_SCHEMA = vol.Schema(
    {
        vol.Optional("publicPath", default=""): str,
        vol.Required("bundles"): BUNDLES_SCHEMA,
    },
    extra=vol.ALLOW_EXTRA,
)


def _infer_kind(url: str) -> AssetKind:
    path = url.split("?", 1)[0].split("#", 1)[0]
    if path.endswith(".css"):
        return AssetKind.STYLE
    return AssetKind.SCRIPT


def _join_public_path(public_path: str, url: str) -> str:
    if not public_path or url.startswith("/") or "://" in url:
        return url
    return f"{public_path.rstrip('/')}/{url}"


def _reject_duplicate_keys(pairs: list[tuple[str, Any]]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in pairs:
        if key in out:
            raise ManifestError(f"Duplicate key in manifest: {key}")
        out[key] = value
    return out


class BundleManifest:
    """Read-only view of a build manifest.

    ``resolve`` never has side effects; an unknown bundle fails before any
    asset is requested.
    """

    def __init__(self, bundles: Mapping[str, list[AssetDescriptor]]) -> None:
        self._bundles: dict[str, tuple[AssetDescriptor, ...]] = {
            name: tuple(assets) for name, assets in bundles.items()
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, public_path: str | None = None) -> "BundleManifest":
        """Validate a manifest document; ``public_path`` overrides ``publicPath``."""
        if not isinstance(data, Mapping):
            raise ManifestError("Manifest must be a JSON object")

        if isinstance(data.get("bundles"), Mapping):
            document = data
        else:
            document = {"bundles": dict(data)}

        try:
            validated = MANIFEST_SCHEMA(dict(document))
        except vol.Invalid as err:
            raise ManifestError(f"Invalid manifest: {err}") from err

        if public_path is None:
            public_path = validated["publicPath"]
        bundles: dict[str, list[AssetDescriptor]] = {}
        for name, assets in validated["bundles"].items():
            bundles[name] = [
                AssetDescriptor(
                    url=_join_public_path(public_path, asset["url"]),
                    kind=AssetKind(asset["kind"]) if "kind" in asset else _infer_kind(asset["url"]),
                    content_hash=asset["contentHash"],
                )
                for asset in assets
            ]

        _LOGGER.debug("Manifest loaded with %d bundles", len(bundles))
        return cls(bundles)

    @classmethod
    def from_file(cls, path: str | Path, *, public_path: str | None = None) -> "BundleManifest":
        path = Path(path)
        try:
            raw = json.loads(
                path.read_text(encoding="utf-8"),
                object_pairs_hook=_reject_duplicate_keys,
            )
        except OSError as err:
            raise ManifestError(f"Cannot read manifest {path}: {err}") from err
        except json.JSONDecodeError as err:
            raise ManifestError(f"Manifest {path} is not valid JSON: {err}") from err
        return cls.from_dict(raw, public_path=public_path)

    def resolve(self, bundle: str) -> list[AssetDescriptor]:
        """Return the ordered assets of ``bundle``."""
        try:
            return list(self._bundles[bundle])
        except KeyError as err:
            raise UnknownBundleError(bundle) from err

    def bundle_names(self) -> list[str]:
        return sorted(self._bundles)

    def __contains__(self, bundle: object) -> bool:
        return bundle in self._bundles

    def __iter__(self) -> Iterator[str]:
        return iter(self._bundles)

    def __len__(self) -> int:
        return len(self._bundles)
