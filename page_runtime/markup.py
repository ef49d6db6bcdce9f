"""Find mount points in server-rendered HTML."""
from __future__ import annotations

import logging

from bs4 import BeautifulSoup

from .const import MODULE_ATTR
from .mount import MountPoint

_LOGGER = logging.getLogger(__name__)


def scan_mount_points(html: str) -> list[MountPoint]:
    """Return a ``MountPoint`` for every element carrying ``data-module``.

    The element's ``id`` identifies the mount point; every other attribute
    is kept as a raw string. Elements without an id are skipped.

    Attribute names come back lowercased (``data-nDatatype`` becomes
    ``data-ndatatype``); ``extract_properties`` matches datatype siblings
    case-insensitively, so either spelling works.
    """
    soup = BeautifulSoup(html, "html.parser")
    points: list[MountPoint] = []
    seen: set[str] = set()

    for element in soup.find_all(attrs={MODULE_ATTR: True}):
        module_type = str(element.get(MODULE_ATTR) or "").strip()
        mount_id = str(element.get("id") or "").strip()
        if not mount_id:
            _LOGGER.warning("Skipping %s mount point without id", module_type or "unnamed")
            continue
        if mount_id in seen:
            raise ValueError(f"Duplicate mount point id: {mount_id}")
        seen.add(mount_id)

        attributes: dict[str, str] = {}
        for name, value in element.attrs.items():
            if name in ("id", MODULE_ATTR):
                continue
            # Multi-valued attributes (class, rel...) come back as lists.
            attributes[name] = " ".join(value) if isinstance(value, list) else str(value)

        points.append(MountPoint(id=mount_id, module_type=module_type, attributes=attributes))

    return points
