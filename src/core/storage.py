"""
Temp Storage Abstraction Layer - The Bridge Pattern

Uploads live only for the duration of one try-on request. The storage
backends (LocalTempStorage, InMemoryTempStorage) hold raw bytes under a
handle; TempResourceManager owns the request-scoped lifecycle on top of them
and guarantees every acquired artifact is released on every exit path.
"""

import uuid
import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from src.core.config import settings
from src.core.logging import get_logger
from src.core.metrics import temp_artifacts_active

logger = get_logger(__name__)


class ITempStorage(ABC):
    """Interface for temp storage operations - The Bridge"""

    @abstractmethod
    async def put(self, data: bytes, filename: str, folder: str) -> str:
        """
        Store bytes and return a unique handle.

        Args:
            data: Raw bytes of the upload
            filename: Original filename (only the suffix is kept)
            folder: Request-scoped prefix so handles never alias across requests

        Returns:
            Handle usable with get() and delete()
        """
        pass

    @abstractmethod
    async def get(self, handle: str) -> bytes:
        """Return the bytes stored under handle. Raises FileNotFoundError."""
        pass

    @abstractmethod
    async def delete(self, handle: str) -> bool:
        """
        Delete the bytes stored under handle.

        Returns:
            True if something was deleted, False if it was already gone
        """
        pass

    @abstractmethod
    async def exists(self, handle: str) -> bool:
        """Check if a handle still has bytes behind it."""
        pass


class LocalTempStorage(ITempStorage):
    """Filesystem-backed temp storage, one sub-directory per request."""

    def __init__(self, base_path: str = "./data/tmp"):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _unique_filename(self, filename: str) -> str:
        ext = Path(filename).suffix.lower()
        return f"{uuid.uuid4().hex}{ext}"

    async def put(self, data: bytes, filename: str, folder: str) -> str:
        folder_path = self.base_path / folder
        folder_path.mkdir(parents=True, exist_ok=True)

        unique_filename = self._unique_filename(filename)
        with open(folder_path / unique_filename, "wb") as f:
            f.write(data)

        return f"{folder}/{unique_filename}"

    async def get(self, handle: str) -> bytes:
        file_path = self.base_path / handle
        if not file_path.exists():
            raise FileNotFoundError(f"Temp artifact not found: {handle}")
        with open(file_path, "rb") as f:
            return f.read()

    async def delete(self, handle: str) -> bool:
        file_path = self.base_path / handle
        if not file_path.exists():
            return False

        file_path.unlink()

        # Drop the request folder once its last artifact is gone
        folder = file_path.parent
        if folder != self.base_path and not any(folder.iterdir()):
            folder.rmdir()
        return True

    async def exists(self, handle: str) -> bool:
        return (self.base_path / handle).exists()

    def residual_files(self) -> List[Path]:
        """Every file still on disk under base_path."""
        return [p for p in self.base_path.rglob("*") if p.is_file()]


class InMemoryTempStorage(ITempStorage):
    """Process-local temp storage. Used in tests and single-node setups."""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}

    async def put(self, data: bytes, filename: str, folder: str) -> str:
        handle = f"{folder}/{uuid.uuid4().hex}{Path(filename).suffix.lower()}"
        self._blobs[handle] = bytes(data)
        return handle

    async def get(self, handle: str) -> bytes:
        try:
            return self._blobs[handle]
        except KeyError:
            raise FileNotFoundError(f"Temp artifact not found: {handle}") from None

    async def delete(self, handle: str) -> bool:
        return self._blobs.pop(handle, None) is not None

    async def exists(self, handle: str) -> bool:
        return handle in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)


# =============================================================================
# Request-scoped lifecycle
# =============================================================================

@dataclass
class TempArtifact:
    """One uploaded file held in temp storage for the current request."""

    handle: str
    field_name: str
    filename: str
    content_type: Optional[str]
    size_bytes: int
    released: bool = False


class TempResourceManager:
    """
    Acquire/release bookkeeping for a single request.

    Usage:
        async with TempResourceManager(storage, request_id) as temps:
            artifact = await temps.acquire(data, "photo.jpg", field="subject")
            data = await temps.read(artifact)
        # every artifact acquired above is released here, whatever happened
    """

    def __init__(self, storage: ITempStorage, request_id: Optional[str] = None):
        self.storage = storage
        self.request_id = request_id or uuid.uuid4().hex
        self._artifacts: List[TempArtifact] = []

    async def acquire(
        self,
        data: bytes,
        filename: str,
        field: str,
        content_type: Optional[str] = None
    ) -> TempArtifact:
        handle = await self.storage.put(data, filename or field, folder=self.request_id)
        artifact = TempArtifact(
            handle=handle,
            field_name=field,
            filename=filename,
            content_type=content_type,
            size_bytes=len(data),
        )
        self._artifacts.append(artifact)
        temp_artifacts_active.inc()

        logger.debug("temp_artifact_acquired", handle=handle, field=field, size_bytes=len(data))
        return artifact

    async def read(self, artifact: TempArtifact) -> bytes:
        if artifact.released:
            raise RuntimeError(f"Temp artifact already released: {artifact.handle}")
        return await self.storage.get(artifact.handle)

    async def release(self, artifact: Optional[TempArtifact]) -> None:
        """Release one artifact. Safe to call any number of times, never raises."""
        if artifact is None or artifact.released:
            return

        artifact.released = True
        temp_artifacts_active.dec()

        try:
            deleted = await self.storage.delete(artifact.handle)
        except Exception as e:
            logger.warning(
                "temp_artifact_delete_failed",
                handle=artifact.handle,
                error=str(e),
                error_type=type(e).__name__
            )
            return

        logger.debug("temp_artifact_released", handle=artifact.handle, deleted=deleted)

    async def release_all(self) -> None:
        for artifact in list(self._artifacts):
            await self.release(artifact)

    @property
    def outstanding(self) -> List[TempArtifact]:
        """Artifacts acquired in this scope and not yet released."""
        return [a for a in self._artifacts if not a.released]

    async def __aenter__(self) -> "TempResourceManager":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        # Shielded so a cancelled request still finishes its cleanup
        await asyncio.shield(self.release_all())
        return False


class StorageFactory:
    """
    Factory for the process-wide temp storage backend.

    The backend is stateless apart from the blobs themselves; request
    isolation comes from the per-request folder in TempResourceManager.
    """

    _instance: Optional[ITempStorage] = None

    @classmethod
    def get_storage(cls) -> ITempStorage:
        if cls._instance is None:
            if settings.TEMP_STORAGE_BACKEND.lower() == "memory":
                cls._instance = InMemoryTempStorage()
            else:
                cls._instance = LocalTempStorage(base_path=settings.TEMP_STORAGE_PATH)

        return cls._instance

    @classmethod
    def reset(cls):
        """Reset the singleton instance (useful for testing)."""
        cls._instance = None


# Convenience function for dependency injection
def get_temp_storage() -> ITempStorage:
    """Get the temp storage instance - ready for FastAPI Depends()."""
    return StorageFactory.get_storage()
