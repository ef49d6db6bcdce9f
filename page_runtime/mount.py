"""Mount registrar: binds module factories to mount points."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .errors import AlreadyMountedError, UnknownModuleError
from .persistence import StoreProvider
from .properties import extract_properties
from .store import SharedStore, StateModule

_LOGGER = logging.getLogger(__name__)


ModuleFactory = Callable[[Mapping[str, Any], SharedStore | None], Any]


@dataclass(frozen=True)
class MountPoint:
    """A page location emitted by the templating layer."""

    id: str
    module_type: str
    attributes: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MountedModule:
    """A live module instance bound to exactly one mount point."""

    mount_point: MountPoint
    instance: Any
    properties: Mapping[str, Any]
    store: SharedStore | None = None

    @property
    def mount_id(self) -> str:
        return self.mount_point.id


class MountStatus:
    """Lightweight status record for a single mount point."""

    __slots__ = ("mount_id", "module_type", "state", "mount_time", "error", "last_activity")

    def __init__(self, mount_id: str, module_type: str) -> None:
        self.mount_id = mount_id
        self.module_type = module_type
        self.state: str = "pending"  # pending | mounted | error | unmounted
        self.mount_time: float = 0.0
        self.error: str | None = None
        self.last_activity: float = 0.0

    def mark_mounted(self, elapsed: float) -> None:
        self.state = "mounted"
        self.mount_time = elapsed
        self.last_activity = time.time()

    def mark_error(self, elapsed: float, exc: Exception) -> None:
        self.state = "error"
        self.mount_time = elapsed
        self.error = str(exc)[:200]
        self.last_activity = time.time()

    def mark_unmounted(self) -> None:
        self.state = "unmounted"
        self.last_activity = time.time()

    def as_dict(self) -> dict[str, Any]:
        return {
            "mount_id": self.mount_id,
            "module_type": self.module_type,
            "state": self.state,
            "mount_time_ms": round(self.mount_time * 1000, 1),
            "error": self.error,
            "last_activity": self.last_activity,
        }


class MountRegistrar:
    """Registry of module factories plus the mounts made from them."""

    def __init__(self, provider: StoreProvider | None = None, *, strict_datatypes: bool = False) -> None:
        self.provider = provider if provider is not None else StoreProvider()
        self.strict_datatypes = strict_datatypes
        self._factories: dict[str, ModuleFactory] = {}
        self._mounted: dict[str, MountedModule] = {}
        self.statuses: dict[str, MountStatus] = {}

    def register(self, module_type: str, factory: ModuleFactory) -> None:
        if module_type in self._factories:
            raise ValueError(f"Module already registered: {module_type}")
        self._factories[module_type] = factory

    def module_types(self) -> list[str]:
        return sorted(self._factories)

    def factory_for(self, module_type: str) -> ModuleFactory:
        try:
            return self._factories[module_type]
        except KeyError as err:
            raise UnknownModuleError(module_type) from err

    def get(self, mount_id: str) -> MountedModule | None:
        return self._mounted.get(mount_id)

    def mounted(self) -> list[MountedModule]:
        return list(self._mounted.values())

    def mount(
        self,
        mount_point: MountPoint,
        factory: ModuleFactory | None = None,
        store: SharedStore | None = None,
        *,
        state_modules: Iterable[StateModule] | None = None,
    ) -> MountedModule:
        """Extract properties, resolve the store and run the factory.

        Failures leave the mount point unmounted and propagate to the caller.
        """
        if mount_point.id in self._mounted:
            raise AlreadyMountedError(f"Mount point already mounted: {mount_point.id}")

        if factory is None:
            factory = self.factory_for(mount_point.module_type)

        status = MountStatus(mount_point.id, mount_point.module_type)
        self.statuses[mount_point.id] = status
        t0 = time.monotonic()
        try:
            properties = MappingProxyType(
                extract_properties(mount_point.attributes, strict=self.strict_datatypes)
            )
            if store is None:
                declared = state_modules
                if declared is None:
                    declared = getattr(factory, "state_modules", None)
                if declared is not None:
                    store = self.provider.get_or_create(declared)

            instance = factory(properties, store)
            if store is not None and store is self.provider.store:
                self.provider.install(instance)
        except Exception as exc:
            status.mark_error(time.monotonic() - t0, exc)
            raise

        mounted = MountedModule(
            mount_point=mount_point,
            instance=instance,
            properties=properties,
            store=store,
        )
        self._mounted[mount_point.id] = mounted
        status.mark_mounted(time.monotonic() - t0)
        _LOGGER.debug("Mounted %s at #%s", mount_point.module_type, mount_point.id)
        return mounted

    def record_error(self, mount_point: MountPoint, exc: Exception) -> MountStatus:
        """Record a mount point abandoned before its factory could run."""
        status = MountStatus(mount_point.id, mount_point.module_type)
        status.mark_error(0.0, exc)
        self.statuses[mount_point.id] = status
        return status

    def unmount(self, mount_id: str) -> bool:
        mounted = self._mounted.pop(mount_id, None)
        if mounted is None:
            _LOGGER.debug("Mount point %s was not mounted, skip unmount", mount_id)
            return False

        ok = True
        destroy = getattr(mounted.instance, "destroy", None)
        if callable(destroy):
            try:
                destroy()
            except Exception:
                _LOGGER.exception("Module at #%s failed to unmount", mount_id)
                ok = False

        status = self.statuses.get(mount_id)
        if status:
            status.mark_unmounted()
        return ok

    def unmount_all(self) -> bool:
        ok = True
        for mount_id in reversed(list(self._mounted)):
            ok = self.unmount(mount_id) and ok
        return ok
