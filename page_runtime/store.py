"""Shared state store.

One ``SharedStore`` holds the state of every declared ``StateModule`` under
its namespace. State only changes through named mutations committed as
``"<namespace>/<mutation>"``; subscribers run synchronously after each
mutation, before ``commit`` returns.
"""
from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .const import MUTATION_SEPARATOR, PATH_SEPARATOR
from .errors import UnknownMutationError

_LOGGER = logging.getLogger(__name__)

Mutation = Callable[[dict[str, Any], Any], None]
Subscriber = Callable[[str, Any, Mapping[str, Any]], None]


@dataclass(frozen=True)
class StateModule:
    """Declaration of one state sub-tree.

    ``state`` is either a mapping (deep-copied per store) or a zero-argument
    callable returning a fresh mapping. ``persistent_paths`` are dotted paths
    relative to the sub-tree.
    """

    namespace: str
    state: Mapping[str, Any] | Callable[[], Mapping[str, Any]] = field(default_factory=dict)
    mutations: Mapping[str, Mutation] = field(default_factory=dict)
    persistent_paths: Sequence[str] = ()

    def initial_state(self) -> dict[str, Any]:
        raw = self.state() if callable(self.state) else self.state
        return copy.deepcopy(dict(raw))

    def initial_value(self, path: str, default: Any = None) -> Any:
        return get_path(self.initial_state(), path, default)

    def qualified_paths(self) -> list[str]:
        return [f"{self.namespace}{PATH_SEPARATOR}{path}" for path in self.persistent_paths]


def get_path(tree: Mapping[str, Any], path: str, default: Any = None) -> Any:
    node: Any = tree
    for part in path.split(PATH_SEPARATOR):
        if not isinstance(node, Mapping) or part not in node:
            return default
        node = node[part]
    return node


def set_path(tree: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(PATH_SEPARATOR)
    node = tree
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


class ReadOnlyMapping(Mapping):
    """Live view of a state dict; nested containers are wrapped on access."""

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, Any]) -> None:
        self._data = data

    def __getitem__(self, key: str) -> Any:
        return read_only(self._data[key])

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._data!r})"


class ReadOnlySequence(Sequence):
    """Live view of a state list."""

    __slots__ = ("_data",)

    def __init__(self, data: Sequence[Any]) -> None:
        self._data = data

    def __getitem__(self, index):
        return read_only(self._data[index])

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Sequence) and not isinstance(other, str):
            return list(self) == list(other)
        return NotImplemented

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._data!r})"


def read_only(value: Any) -> Any:
    if isinstance(value, (ReadOnlyMapping, ReadOnlySequence)):
        return value
    if isinstance(value, dict):
        return ReadOnlyMapping(value)
    if isinstance(value, list):
        return ReadOnlySequence(value)
    return value


def to_plain(value: Any) -> Any:
    """Deep plain copy of a value read through a read-only view."""
    if isinstance(value, (ReadOnlyMapping, ReadOnlySequence)):
        return copy.deepcopy(value._data)
    return value


class SharedStore:
    """Mutable state tree shared by every module instance on a page."""

    def __init__(self, modules: Iterable[StateModule] = ()) -> None:
        self._modules: dict[str, StateModule] = {}
        self._state: dict[str, dict[str, Any]] = {}
        self._mutations: dict[str, tuple[str, Mutation]] = {}
        self._subscribers: list[Subscriber] = []
        self._committing = False

        for module in modules:
            if module.namespace in self._modules:
                raise ValueError(f"State module already declared: {module.namespace}")
            self._modules[module.namespace] = module
            self._state[module.namespace] = module.initial_state()
            for name, fn in module.mutations.items():
                self._mutations[f"{module.namespace}{MUTATION_SEPARATOR}{name}"] = (module.namespace, fn)

    @property
    def state(self) -> Mapping[str, Any]:
        """Deep read-only view; change state via ``commit``."""
        return ReadOnlyMapping(self._state)

    @property
    def modules(self) -> Mapping[str, StateModule]:
        return MappingProxyType(self._modules)

    def get(self, path: str, default: Any = None) -> Any:
        """Read ``"<namespace>.<path>"``."""
        return read_only(get_path(self._state, path, default))

    def mutation_types(self) -> list[str]:
        return sorted(self._mutations)

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        self._subscribers.append(subscriber)

        def _remove() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return _remove

    def commit(self, mutation_type: str, payload: Any = None) -> None:
        try:
            namespace, fn = self._mutations[mutation_type]
        except KeyError as err:
            raise UnknownMutationError(f"Unknown mutation: {mutation_type}") from err

        if self._committing:
            raise RuntimeError(f"Cannot commit {mutation_type} while another mutation runs")

        subtree = self._state[namespace]
        snapshot = copy.deepcopy(subtree)
        self._committing = True
        try:
            fn(subtree, payload)
        except Exception:
            # Roll back so state never runs ahead of the persisted snapshot.
            subtree.clear()
            subtree.update(snapshot)
            raise
        finally:
            self._committing = False

        _LOGGER.debug("Committed %s", mutation_type)
        for subscriber in list(self._subscribers):
            subscriber(mutation_type, payload, self.state)

    def _seed(self, path: str, value: Any) -> None:
        # Only used while the store is being constructed.
        set_path(self._state, path, value)
