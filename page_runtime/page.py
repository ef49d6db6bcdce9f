"""Page composition root.

A ``Page`` owns everything that lives for one page lifetime: the asset load
records, the shared store, the mounted modules and the deferred triggers.
Handles are passed explicitly from here into module factories; there is no
ambient global state.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable, Mapping
from typing import Any

from .config import RuntimeConfig
from .const import DEFAULT_KEY_PREFIX
from .errors import AlreadyMountedError
from .loader import AssetHook, AssetInjector, AssetLoader, HttpAssetInjector
from .manifest import BundleManifest
from .mount import ModuleFactory, MountedModule, MountPoint, MountRegistrar
from .persistence import JsonFileStorage, MemoryStorage, StorageBackend, StoreProvider
from .store import SharedStore, StateModule
from .trigger import EventPredicate, LazyTrigger, PageEvent, on_visible

_LOGGER = logging.getLogger(__name__)


def _required_bundles(
    requires: Mapping[str, str | Iterable[str]] | None, point: MountPoint
) -> list[str]:
    if not requires:
        return []
    names = requires.get(point.id, requires.get(point.module_type, ()))
    if isinstance(names, str):
        return [names]
    return list(names)


class Page:
    """Runtime container for one rendered page."""

    def __init__(
        self,
        manifest: BundleManifest,
        injector: AssetInjector,
        *,
        storage: StorageBackend | None = None,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        load_timeout: float | None = None,
        strict_datatypes: bool = False,
    ) -> None:
        self.manifest = manifest
        self.injector = injector
        self.loader = AssetLoader(injector)
        self.provider = StoreProvider(storage, key_prefix=key_prefix)
        self.registrar = MountRegistrar(self.provider, strict_datatypes=strict_datatypes)
        self.load_timeout = load_timeout
        self.triggers: dict[str, LazyTrigger] = {}

    @classmethod
    def from_config(
        cls,
        config: RuntimeConfig,
        *,
        manifest: BundleManifest | None = None,
        injector: AssetInjector | None = None,
        on_asset: AssetHook | None = None,
    ) -> "Page":
        if manifest is None:
            if not config.manifest_path:
                raise ValueError("manifest_path is not configured")
            manifest = BundleManifest.from_file(
                config.manifest_path,
                public_path=config.public_path or None,
            )

        if injector is None:
            injector = HttpAssetInjector(
                base_url=config.base_url,
                verify_hashes=config.verify_hashes,
                hash_algorithm=config.hash_algorithm,
                request_timeout=config.request_timeout,
                on_asset=on_asset,
            )

        storage: StorageBackend
        if config.storage_path:
            storage = JsonFileStorage(config.storage_path)
        else:
            storage = MemoryStorage()

        return cls(
            manifest,
            injector,
            storage=storage,
            key_prefix=config.storage_key_prefix,
            load_timeout=config.load_timeout,
            strict_datatypes=config.strict_datatypes,
        )

    def register_module(self, module_type: str, factory: ModuleFactory) -> None:
        self.registrar.register(module_type, factory)

    def get_store(self, state_modules: Iterable[StateModule] = ()) -> SharedStore:
        return self.provider.get_or_create(state_modules)

    async def async_load_bundle(self, bundle: str) -> None:
        assets = self.manifest.resolve(bundle)
        await self.loader.async_load(assets, timeout=self.load_timeout)

    async def async_bootstrap(
        self,
        mount_points: Iterable[MountPoint],
        bundles: Iterable[str] = (),
        *,
        requires: Mapping[str, str | Iterable[str]] | None = None,
    ) -> list[MountedModule]:
        """Eager path: load bundles then mount every point whose code loaded.

        ``bundles`` are needed by every point. ``requires`` adds bundles per
        mount point, keyed by mount id or by module type. A point whose
        bundle failed is recorded as an error and not mounted; a point that
        fails to mount is logged and skipped. Siblings still mount.
        """
        t0 = time.monotonic()
        points = list(mount_points)
        shared = list(bundles)
        needs = {point.id: shared + _required_bundles(requires, point) for point in points}

        to_load = list(dict.fromkeys(shared + [b for names in needs.values() for b in names]))
        results = await asyncio.gather(
            *(self.async_load_bundle(bundle) for bundle in to_load),
            return_exceptions=True,
        )
        failed: dict[str, Exception] = {}
        for bundle, result in zip(to_load, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failed[bundle] = result
                _LOGGER.error("Bundle %s failed to load: %s", bundle, result)

        mounted: list[MountedModule] = []
        for point in points:
            missing = [bundle for bundle in needs[point.id] if bundle in failed]
            if missing:
                self.registrar.record_error(point, failed[missing[0]])
                _LOGGER.warning(
                    "Mount point #%s (%s) skipped, bundle %s failed to load",
                    point.id, point.module_type, missing[0],
                )
                continue
            try:
                mounted.append(self.registrar.mount(point))
            except Exception:
                _LOGGER.exception("Mount point #%s (%s) failed to mount, skipping", point.id, point.module_type)

        _LOGGER.info(
            "Page boot: %d/%d mounted, %d/%d bundles loaded in %.0f ms",
            len(mounted), len(points),
            len(to_load) - len(failed), len(to_load),
            (time.monotonic() - t0) * 1000,
        )
        return mounted

    def register_lazy(
        self,
        bundle: str,
        mount_point: MountPoint,
        predicate: EventPredicate | None = None,
        *,
        factory: ModuleFactory | None = None,
        state_modules: Iterable[StateModule] | None = None,
        delay: float | None = None,
    ) -> LazyTrigger:
        """Defer ``bundle`` until ``predicate`` matches an event (default:
        the mount point becoming visible) or ``delay`` seconds pass."""
        if mount_point.id in self.triggers or self.registrar.get(mount_point.id) is not None:
            raise AlreadyMountedError(f"Mount point already taken: {mount_point.id}")

        trigger = LazyTrigger(
            bundle,
            mount_point,
            manifest=self.manifest,
            loader=self.loader,
            registrar=self.registrar,
            predicate=predicate or on_visible(mount_point.id),
            factory=factory,
            state_modules=state_modules,
            load_timeout=self.load_timeout,
        )
        self.triggers[mount_point.id] = trigger
        if delay is not None:
            trigger.arm_timer(delay)
        return trigger

    def dispatch(self, event: PageEvent) -> list[asyncio.Task]:
        """Offer ``event`` to every deferred trigger; returns started loads."""
        started: list[asyncio.Task] = []
        for trigger in self.triggers.values():
            task = trigger.fire(event)
            if task is not None:
                started.append(task)
        return started

    async def async_teardown(self) -> bool:
        for trigger in self.triggers.values():
            trigger.disarm()
        ok = self.registrar.unmount_all()
        self.provider.reset()

        close = getattr(self.injector, "async_close", None)
        if close is not None:
            await close()
        return ok

    def describe(self) -> dict[str, Any]:
        return {
            "bundles": self.manifest.bundle_names(),
            "assets": self.loader.as_dict(),
            "mounts": {mount_id: s.as_dict() for mount_id, s in self.registrar.statuses.items()},
            "triggers": {mount_id: t.as_dict() for mount_id, t in self.triggers.items()},
            "store": self.provider.store is not None,
        }
