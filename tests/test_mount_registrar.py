"""Tests for the mount registrar."""
import pytest

from _fakes import Widget, widget_factory
from page_runtime.errors import AlreadyMountedError, TypeCoercionError, UnknownModuleError
from page_runtime.mount import MountPoint, MountRegistrar
from page_runtime.persistence import StoreProvider
from page_runtime.store import StateModule


@pytest.fixture
def registrar():
    registrar = MountRegistrar(StoreProvider())
    registrar.register("widget", widget_factory)
    return registrar


def test_mount_extracts_typed_properties(registrar):
    point = MountPoint("w1", "widget", {"data-n": "5", "data-nDatatype": "Number"})
    mounted = registrar.mount(point)

    assert isinstance(mounted.instance, Widget)
    assert mounted.mount_id == "w1"
    assert dict(mounted.properties) == {"n": 5}
    assert mounted.instance.store is None
    assert registrar.get("w1") is mounted
    assert registrar.statuses["w1"].state == "mounted"


def test_properties_are_read_only(registrar):
    mounted = registrar.mount(MountPoint("w1", "widget", {"title": "x"}))
    with pytest.raises(TypeError):
        mounted.properties["title"] = "y"


def test_instances_are_independent_but_share_store(registrar, counter_module, prefs_module):
    first = registrar.mount(MountPoint("w1", "widget", {"label": "one"}), state_modules=[counter_module])
    second = registrar.mount(MountPoint("w2", "widget", {"label": "two"}), state_modules=[prefs_module])

    assert first.instance is not second.instance
    assert first.properties["label"] == "one"
    assert second.properties["label"] == "two"
    assert first.store is second.store
    assert "prefs" not in second.store.state

    first.store.commit("counter/increment")
    assert second.instance.store.get("counter.count") == 1


def test_factory_declared_state_modules(counter_module):
    registrar = MountRegistrar(StoreProvider())

    def counter_factory(props, store):
        return Widget(props, store)

    counter_factory.state_modules = [counter_module]
    registrar.register("counter", counter_factory)

    mounted = registrar.mount(MountPoint("c1", "counter"))
    assert mounted.store is registrar.provider.store
    assert mounted.store.get("counter.count") == 0


def test_store_resolved_before_factory_runs(counter_module):
    registrar = MountRegistrar(StoreProvider())
    seen = []

    def factory(props, store):
        seen.append(registrar.provider.store is store and store is not None)
        return object()

    registrar.mount(MountPoint("x", "any"), factory, state_modules=[counter_module])
    assert seen == [True]


def test_shared_store_replaces_module_local_store(counter_module):
    registrar = MountRegistrar(StoreProvider())
    shared = registrar.provider.get_or_create([counter_module])

    class OwnStoreWidget(Widget):
        def __init__(self, props, store):
            super().__init__(props, store)
            self.store = object()

    mounted = registrar.mount(MountPoint("x", "own"), OwnStoreWidget, shared)
    assert mounted.instance.store is shared


def test_unknown_module_leaves_point_unmounted(registrar):
    with pytest.raises(UnknownModuleError) as exc_info:
        registrar.mount(MountPoint("z1", "nope"))
    assert exc_info.value.module_type == "nope"
    assert registrar.get("z1") is None
    assert "z1" not in registrar.statuses


def test_bad_attribute_fails_only_that_mount(registrar):
    with pytest.raises(TypeCoercionError):
        registrar.mount(MountPoint("bad", "widget", {"n": "x", "nDatatype": "Number"}))
    good = registrar.mount(MountPoint("good", "widget", {"n": "1", "nDatatype": "Number"}))

    assert registrar.get("bad") is None
    assert registrar.statuses["bad"].state == "error"
    assert good.properties["n"] == 1


def test_mount_twice_rejected(registrar):
    registrar.mount(MountPoint("w1", "widget"))
    with pytest.raises(AlreadyMountedError):
        registrar.mount(MountPoint("w1", "widget"))


def test_register_duplicate_type(registrar):
    with pytest.raises(ValueError):
        registrar.register("widget", widget_factory)
    assert registrar.module_types() == ["widget"]


def test_unmount_calls_destroy(registrar):
    mounted = registrar.mount(MountPoint("w1", "widget"))
    assert registrar.unmount("w1") is True
    assert mounted.instance.destroyed is True
    assert registrar.statuses["w1"].state == "unmounted"
    assert registrar.unmount("w1") is False


def test_unmount_all_survives_failing_destroy(registrar):
    class Fragile(Widget):
        def destroy(self):
            raise RuntimeError("boom")

    registrar.mount(MountPoint("f", "fragile"), Fragile)
    ok_widget = registrar.mount(MountPoint("w", "widget"))

    assert registrar.unmount_all() is False
    assert ok_widget.instance.destroyed is True
    assert registrar.mounted() == []


def test_status_as_dict(registrar):
    registrar.mount(MountPoint("w1", "widget"))
    info = registrar.statuses["w1"].as_dict()
    assert info["mount_id"] == "w1"
    assert info["module_type"] == "widget"
    assert info["state"] == "mounted"
    assert info["error"] is None


def test_store_constructed_once_across_mounts():
    """Later mounts never re-run store construction."""
    built = []

    def _state():
        built.append(1)
        return {"n": 0}

    module = StateModule(namespace="once", state=_state)
    registrar = MountRegistrar(StoreProvider())
    registrar.register("widget", widget_factory)
    for idx in range(3):
        registrar.mount(MountPoint(f"w{idx}", "widget"), state_modules=[module])
    assert built == [1]
