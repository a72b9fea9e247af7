"""Local file storage for uploaded lab report PDFs."""

import uuid
from pathlib import Path
from typing import Optional

from app.config import settings
from app.core.logging import logger
from app.shared.exceptions import FetchError


class StorageService:
    """Reads and writes PDF blobs under the configured upload directory."""

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.UPLOAD_DIR)

    def _resolve(self, storage_path: str) -> Path:
        path = (self.root / storage_path).resolve()
        if self.root.resolve() not in path.parents:
            raise FetchError(f"Storage path escapes upload directory: {storage_path}")
        return path

    def save(self, user_id: str, filename: str, data: bytes) -> str:
        """Store bytes and return the storage path relative to the root."""
        suffix = Path(filename).suffix.lower() or ".pdf"
        storage_path = f"{user_id}/{uuid.uuid4().hex}{suffix}"

        path = self._resolve(storage_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

        logger.info(f"Stored {len(data)} bytes at {storage_path}")
        return storage_path

    async def read(self, storage_path: str) -> bytes:
        """Load a stored PDF. Raises FetchError when it is missing or unreadable."""
        path = self._resolve(storage_path)
        try:
            return path.read_bytes()
        except OSError as e:
            raise FetchError(f"Failed to download PDF: {e}") from e

    def delete(self, storage_path: str) -> bool:
        """Remove a stored PDF. Returns False when nothing was removed."""
        try:
            path = self._resolve(storage_path)
            path.unlink()
            return True
        except (OSError, FetchError) as e:
            logger.warning(f"Could not delete stored PDF {storage_path}: {e}")
            return False
