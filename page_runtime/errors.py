from __future__ import annotations


class PageRuntimeError(Exception):
    """Base class for page runtime errors."""


class ManifestError(PageRuntimeError):
    """Raised when a bundle manifest document fails validation."""


class UnknownBundleError(PageRuntimeError):
    """Raised when a bundle name is absent from the manifest."""

    def __init__(self, bundle: str) -> None:
        super().__init__(f"Unknown bundle: {bundle}")
        self.bundle = bundle


class AssetLoadError(PageRuntimeError):
    """Raised when an asset (and therefore its bundle) fails to load."""

    def __init__(self, url: str, reason: str = "") -> None:
        message = f"Failed to load asset {url}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.url = url
        self.reason = reason


class AssetTimeoutError(AssetLoadError):
    """Raised when the load watchdog expires before a bundle finishes."""


class TypeCoercionError(PageRuntimeError):
    """Raised when a typed mount point attribute cannot be converted."""

    def __init__(self, key: str, value: str, datatype: str) -> None:
        super().__init__(f"Cannot coerce {key}={value!r} to {datatype}")
        self.key = key
        self.value = value
        self.datatype = datatype


class UnknownModuleError(PageRuntimeError):
    """Raised when a mount point references an unregistered module type."""

    def __init__(self, module_type: str) -> None:
        super().__init__(f"Unknown module: {module_type}")
        self.module_type = module_type


class AlreadyMountedError(PageRuntimeError):
    """Raised when a mount point is mounted a second time."""


class UnknownMutationError(PageRuntimeError):
    """Raised when a store commit names a mutation nobody declared."""
