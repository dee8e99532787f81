import stat as stat_module
from dataclasses import dataclass
from pathlib import Path
from typing import List

import aiofiles
import aiofiles.os
from fastapi import UploadFile

from exceptions import ImageValidationError, StorageError
from logging_config import get_logger

logger = get_logger(__name__)

CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class StoredFileStat:
    size_bytes: int
    is_file: bool


class ImageStore:
    """Directory of uploaded image blobs named ``<unixMillis>_<originalName>``."""

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path)

    async def ensure_directory(self) -> None:
        if not await aiofiles.os.path.exists(self.base_path):
            logger.info(f"Creating image storage directory at {self.base_path}")
        await aiofiles.os.makedirs(self.base_path, exist_ok=True)

    def path_for(self, stored_name: str) -> Path:
        if not stored_name or Path(stored_name).name != stored_name or stored_name in (".", ".."):
            raise StorageError(f"Invalid stored file name: {stored_name!r}")
        return self.base_path / stored_name

    async def list_names(self) -> List[str]:
        try:
            return await aiofiles.os.listdir(self.base_path)
        except OSError as e:
            raise StorageError(f"Cannot list image directory {self.base_path}: {e}") from e

    async def stat(self, stored_name: str) -> StoredFileStat:
        try:
            result = await aiofiles.os.stat(self.path_for(stored_name))
        except OSError as e:
            raise StorageError(f"Cannot stat '{stored_name}': {e}") from e
        return StoredFileStat(size_bytes=result.st_size, is_file=stat_module.S_ISREG(result.st_mode))

    async def exists(self, stored_name: str) -> bool:
        return await aiofiles.os.path.exists(self.path_for(stored_name))

    async def write_upload(self, stored_name: str, upload: UploadFile, max_bytes: int) -> int:
        """Stream ``upload`` to disk and return the number of bytes written.

        The partial file is removed when the upload goes over ``max_bytes``
        or the write fails.
        """
        target = self.path_for(stored_name)
        size = 0
        try:
            async with aiofiles.open(target, 'wb') as out_file:
                while chunk := await upload.read(CHUNK_SIZE):
                    size += len(chunk)
                    if size > max_bytes:
                        raise ImageValidationError(
                            f"File '{upload.filename}' exceeds the size limit of {max_bytes} bytes"
                        )
                    await out_file.write(chunk)
        except ImageValidationError:
            await self._discard(target)
            raise
        except OSError as e:
            logger.exception(f"Error saving file '{upload.filename}' to {target}")
            await self._discard(target)
            raise StorageError(f"Error saving file '{upload.filename}': {e}") from e
        finally:
            await upload.close()
        logger.debug(f"Wrote {size} bytes to {target}")
        return size

    async def delete(self, stored_name: str) -> None:
        target = self.path_for(stored_name)
        try:
            await aiofiles.os.remove(target)
        except OSError as e:
            logger.exception(f"Error deleting file {target}")
            raise StorageError(f"Error deleting file '{stored_name}': {e}") from e
        logger.info(f"Deleted file {target}")

    async def discard(self, stored_name: str) -> None:
        """Best-effort removal used when rolling back a failed upload."""
        await self._discard(self.path_for(stored_name))

    async def _discard(self, target: Path) -> None:
        try:
            await aiofiles.os.remove(target)
        except FileNotFoundError:
            pass
        except OSError:
            logger.exception(f"Could not remove partial file {target}")
