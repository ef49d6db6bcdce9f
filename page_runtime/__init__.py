"""Client-side module runtime for server-rendered pages.

Regions of a rendered page are enhanced by independently built modules.
This package loads their bundles on demand, mounts them with typed
properties, and gives every module on the page one shared, partly
persisted state store.
"""

from __future__ import annotations

from .config import RuntimeConfig, load_config
from .errors import (
    AlreadyMountedError,
    AssetLoadError,
    AssetTimeoutError,
    ManifestError,
    PageRuntimeError,
    TypeCoercionError,
    UnknownBundleError,
    UnknownModuleError,
    UnknownMutationError,
)
from .loader import AssetLoader, AssetStatus, HttpAssetInjector
from .manifest import AssetDescriptor, AssetKind, BundleManifest
from .markup import scan_mount_points
from .mount import MountedModule, MountPoint, MountRegistrar
from .page import Page
from .persistence import JsonFileStorage, MemoryStorage, StoreProvider
from .properties import Datatype, extract_properties
from .store import SharedStore, StateModule
from .trigger import (
    EVENT_CLICK,
    EVENT_SCROLL,
    EVENT_TIMER,
    EVENT_VISIBLE,
    LazyTrigger,
    PageEvent,
    TriggerState,
    any_of,
    on_event,
    on_visible,
)

__all__ = [
    "AlreadyMountedError",
    "AssetDescriptor",
    "AssetKind",
    "AssetLoadError",
    "AssetLoader",
    "AssetStatus",
    "AssetTimeoutError",
    "BundleManifest",
    "Datatype",
    "EVENT_CLICK",
    "EVENT_SCROLL",
    "EVENT_TIMER",
    "EVENT_VISIBLE",
    "HttpAssetInjector",
    "JsonFileStorage",
    "LazyTrigger",
    "ManifestError",
    "MemoryStorage",
    "MountPoint",
    "MountRegistrar",
    "MountedModule",
    "Page",
    "PageEvent",
    "PageRuntimeError",
    "RuntimeConfig",
    "SharedStore",
    "StateModule",
    "StoreProvider",
    "TriggerState",
    "TypeCoercionError",
    "UnknownBundleError",
    "UnknownModuleError",
    "UnknownMutationError",
    "any_of",
    "extract_properties",
    "load_config",
    "on_event",
    "on_visible",
    "scan_mount_points",
]
