"""Lazy trigger: defer a bundle until a page event asks for it.

Each trigger runs ``idle -> loading -> mounted|failed`` exactly once. The
``idle -> loading`` step happens synchronously inside ``fire`` so repeated
events never start a second load or a second module instance.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from .loader import AssetLoader
from .manifest import BundleManifest
from .mount import ModuleFactory, MountedModule, MountPoint, MountRegistrar
from .store import StateModule

_LOGGER = logging.getLogger(__name__)

EVENT_CLICK = "click"
EVENT_SCROLL = "scroll"
EVENT_VISIBLE = "visible"
EVENT_TIMER = "timer"


class TriggerState(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    MOUNTED = "mounted"
    FAILED = "failed"


@dataclass(frozen=True)
class PageEvent:
    """Something that happened on the page (click, scroll, visibility...)."""

    type: str
    target: str | None = None
    data: Mapping[str, Any] = field(default_factory=dict)


EventPredicate = Callable[[PageEvent], bool]
StateListener = Callable[["LazyTrigger", TriggerState, TriggerState], None]


def on_event(event_type: str, target: str | None = None) -> EventPredicate:
    """Match events of ``event_type``, optionally only on ``target``."""

    def _predicate(event: PageEvent) -> bool:
        if event.type != event_type:
            return False
        return target is None or event.target == target

    return _predicate


def on_visible(target: str) -> EventPredicate:
    return on_event(EVENT_VISIBLE, target)


def any_of(*predicates: EventPredicate) -> EventPredicate:
    def _predicate(event: PageEvent) -> bool:
        return any(predicate(event) for predicate in predicates)

    return _predicate


def _consume_exception(task: asyncio.Task) -> None:
    # The error is kept on the trigger; callers may never await the task.
    if not task.cancelled():
        task.exception()


class LazyTrigger:
    """Loads one deferred bundle and mounts its module at most once."""

    def __init__(
        self,
        bundle: str,
        mount_point: MountPoint,
        *,
        manifest: BundleManifest,
        loader: AssetLoader,
        registrar: MountRegistrar,
        predicate: EventPredicate,
        factory: ModuleFactory | None = None,
        state_modules: Iterable[StateModule] | None = None,
        load_timeout: float | None = None,
    ) -> None:
        self.bundle = bundle
        self.mount_point = mount_point
        self.manifest = manifest
        self.loader = loader
        self.registrar = registrar
        self.predicate = predicate
        self.factory = factory
        self.state_modules = list(state_modules) if state_modules is not None else None
        self.load_timeout = load_timeout

        self.state = TriggerState.IDLE
        self.error: Exception | None = None
        self.mounted: MountedModule | None = None
        self._task: asyncio.Task | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._listeners: list[StateListener] = []

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def fire(self, event: PageEvent) -> asyncio.Task | None:
        """Offer ``event``; starts the load if it qualifies and nothing ran yet."""
        if self.state is not TriggerState.IDLE:
            return None
        if not self.predicate(event):
            return None
        return self.activate()

    def activate(self) -> asyncio.Task | None:
        """Start loading regardless of events (timer or eager callers)."""
        if self.state is not TriggerState.IDLE:
            _LOGGER.debug("Trigger for %s already %s, ignoring", self.bundle, self.state.value)
            return None
        # Raises RuntimeError outside a running loop, leaving the trigger idle.
        loop = asyncio.get_running_loop()
        self.disarm()
        self._task = loop.create_task(self._run())
        self._task.add_done_callback(_consume_exception)
        self._transition(TriggerState.LOADING)
        return self._task

    def arm_timer(self, delay: float) -> None:
        """Activate after ``delay`` seconds unless an event got there first."""
        self.disarm()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self.activate)

    def disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def wait(self) -> MountedModule:
        """Wait for the terminal state; raises the load or mount error."""
        if self._task is None:
            raise RuntimeError(f"Trigger for {self.bundle} has not fired")
        return await asyncio.shield(self._task)

    async def _run(self) -> MountedModule:
        try:
            assets = self.manifest.resolve(self.bundle)
            await self.loader.async_load(assets, timeout=self.load_timeout)
            mounted = self.registrar.mount(
                self.mount_point,
                self.factory,
                state_modules=self.state_modules,
            )
        except Exception as err:
            self.error = err
            self._transition(TriggerState.FAILED)
            _LOGGER.warning("Deferred bundle %s for #%s failed: %s", self.bundle, self.mount_point.id, err)
            raise

        self.mounted = mounted
        self._transition(TriggerState.MOUNTED)
        _LOGGER.info("Deferred bundle %s mounted at #%s", self.bundle, self.mount_point.id)
        return mounted

    def _transition(self, new: TriggerState) -> None:
        old = self.state
        self.state = new
        for listener in list(self._listeners):
            try:
                listener(self, old, new)
            except Exception:
                _LOGGER.exception("Trigger listener failed for %s", self.bundle)

    def as_dict(self) -> dict[str, Any]:
        return {
            "bundle": self.bundle,
            "mount_id": self.mount_point.id,
            "state": self.state.value,
            "error": str(self.error) if self.error else None,
        }
