"""Root pytest configuration for page_runtime tests.

Everything here runs without network access: asset injection goes through
``GatedInjector`` (see ``_fakes.py``), which lets a test decide when, and
whether, each URL finishes loading.
"""
import sys
from pathlib import Path

import pytest

# Add project root and this directory to Python path for imports
project_root = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(Path(__file__).resolve().parent))

from _fakes import GatedInjector  # noqa: E402
from page_runtime.manifest import BundleManifest  # noqa: E402
from page_runtime.store import StateModule  # noqa: E402


def _increment(state, payload):
    state["count"] += payload if payload is not None else 1


def _set_theme(state, payload):
    state["theme"] = payload


@pytest.fixture
def manifest():
    """The two-bundle manifest used throughout the docs."""
    return BundleManifest.from_dict(
        {
            "a": [{"url": "/v.js", "kind": "script"}],
            "b": [
                {"url": "/v.js", "kind": "script"},
                {"url": "/m.js", "kind": "script"},
            ],
        }
    )


@pytest.fixture
def injector():
    return GatedInjector()


@pytest.fixture
def counter_module():
    """``{count: 0}`` with ``count`` persisted."""
    return StateModule(
        namespace="counter",
        state={"count": 0},
        mutations={"increment": _increment},
        persistent_paths=["count"],
    )


@pytest.fixture
def prefs_module():
    """A sub-tree without persistent paths."""
    return StateModule(
        namespace="prefs",
        state={"theme": "light"},
        mutations={"set_theme": _set_theme},
    )
