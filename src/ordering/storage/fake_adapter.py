"""Fake object storage — deterministic uploads for testing and development."""

from ordering.storage.port import ObjectStorage, PresignedUpload


class FakeStorage(ObjectStorage):
    """Fake storage that records every call and succeeds by default."""

    def __init__(self, base_url: str = "https://cdn.example.com") -> None:
        self.base_url = base_url.rstrip("/")
        self.should_succeed = True
        self.failure_reason = "Storage unavailable"
        self.calls: list[dict] = []
        self.deleted: list[str] = []

    def configure(self, should_succeed: bool = True, failure_reason: str = "Storage unavailable") -> None:
        """Configure the fake storage behavior for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def presign_upload(self, key: str, content_type: str, size: int) -> PresignedUpload:
        self.calls.append({"method": "presign_upload", "key": key, "content_type": content_type, "size": size})
        if not self.should_succeed:
            raise ConnectionError(self.failure_reason)
        return PresignedUpload(
            upload_url=f"{self.base_url}/upload/{key}?signature=fake",
            public_url=f"{self.base_url}/{key}",
            key=key,
            expires_in=300,
            headers={"Content-Type": content_type},
        )

    def delete(self, url: str) -> None:
        self.calls.append({"method": "delete", "url": url})
        if not self.should_succeed:
            raise ConnectionError(self.failure_reason)
        self.deleted.append(url)
