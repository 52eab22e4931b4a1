"""Embedded voice model catalog and on-disk store."""

from assistant_speech.models.catalog import (
    CatalogError,
    ModelCatalog,
    ModelDescriptor,
    UnsupportedLocale,
    load_model_catalog,
)
from assistant_speech.models.store import (
    Downloading,
    Failed,
    Installed,
    ModelInstallState,
    ModelStore,
    ModelStoreError,
    NotInstalled,
)

__all__ = [
    "CatalogError",
    "Downloading",
    "Failed",
    "Installed",
    "ModelCatalog",
    "ModelDescriptor",
    "ModelInstallState",
    "ModelStore",
    "ModelStoreError",
    "NotInstalled",
    "UnsupportedLocale",
    "load_model_catalog",
]
