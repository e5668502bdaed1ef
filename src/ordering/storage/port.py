"""Object storage port — abstract interface for package photo uploads.

Clients upload package photos straight to object storage through a presigned
URL; the order only keeps the public URLs. Photos dropped from a package are
deleted best-effort.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class PresignedUpload:
    """Where and how a client should upload a file."""

    upload_url: str
    public_url: str
    key: str
    expires_in: int
    headers: dict | None = None


class ObjectStorage(ABC):
    """Abstract interface for object storage adapters."""

    @abstractmethod
    def presign_upload(self, key: str, content_type: str, size: int) -> PresignedUpload:
        """Return a presigned upload for ``key``."""
        ...

    @abstractmethod
    def delete(self, url: str) -> None:
        """Delete the object behind a public URL. Raises on failure."""
        ...
