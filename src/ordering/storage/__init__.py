"""Object storage factory.

Provides get_storage() / set_storage() / reset_storage(). Uses FakeStorage by
default; STORAGE_PUBLIC_BASE_URL sets the public URL prefix.
"""

import os

from ordering.storage.port import ObjectStorage

_current_storage: ObjectStorage | None = None


def get_storage() -> ObjectStorage:
    """Return the current object storage adapter (singleton)."""
    global _current_storage
    if _current_storage is None:
        from ordering.storage.fake_adapter import FakeStorage

        _current_storage = FakeStorage(base_url=os.environ.get("STORAGE_PUBLIC_BASE_URL", "https://cdn.example.com"))
    return _current_storage


def set_storage(storage: ObjectStorage) -> None:
    """Override the active storage adapter (useful for tests)."""
    global _current_storage
    _current_storage = storage


def reset_storage() -> None:
    """Reset the storage singleton."""
    global _current_storage
    _current_storage = None
