"""In-memory image registry, rebuilt from the upload directory.

The registry is a cache: everything in it can be recomputed from the file
names in the :class:`storage.ImageStore` directory. It is owned by one
``ImageRegistry`` object created at startup and shared through ``app.state``.
"""
import asyncio
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from exceptions import ImageValidationError, StorageError
from logging_config import get_logger
from schemas import ImageRecord
from storage import ImageStore

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ImageRegistry:
    def __init__(self, store: ImageStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock
        self.lock = asyncio.Lock()
        self._records: List[ImageRecord] = []
        self._by_id: Dict[str, ImageRecord] = {}
        self._by_stored_name: Dict[str, ImageRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, image_id: str) -> bool:
        return image_id in self._by_id

    def contains_stored_name(self, stored_name: str) -> bool:
        return stored_name in self._by_stored_name

    def timestamp_in_use(self, timestamp: str) -> bool:
        """True when an id or a stored name already uses this millisecond stamp."""
        if timestamp in self._by_id:
            return True
        prefix = f"{timestamp}_"
        return any(name.startswith(prefix) for name in self._by_stored_name)

    def sorted_records(self) -> List[ImageRecord]:
        return sorted(self._records, key=lambda record: record.uploaded_at, reverse=True)

    async def reconcile(self) -> int:
        """Rebuild the registry from the upload directory.

        Adds a record for every well-named regular file that has none, drops
        records whose file is gone, and leaves the registry as it was when the
        directory cannot be read. Returns the number of records.
        """
        async with self.lock:
            return await self._reconcile()

    async def _reconcile(self) -> int:
        try:
            names = await self.store.list_names()
        except StorageError:
            logger.exception("Failed to rebuild image list; registry left unchanged")
            return len(self)

        found: List[ImageRecord] = []
        present_names = set()
        for name in names:
            if name.startswith('.'):
                continue
            try:
                file_stat = await self.store.stat(name)
            except StorageError as e:
                logger.warning(f"Skipping '{name}' during rebuild: {e.message}")
                continue
            if not file_stat.is_file:
                continue
            record = ImageRecord.from_stored_file(name, file_stat.size_bytes)
            if record is None:
                logger.debug(f"Skipping '{name}': not a valid <timestamp>_<name> file name")
                continue
            present_names.add(name)
            found.append(record)

        stale = [record for record in self._records if record.stored_name not in present_names]
        for record in stale:
            logger.warning(f"Dropping image {record.id}: file '{record.stored_name}' no longer exists")
            self.remove(record.id)

        added = 0
        for record in found:
            if record.id in self._by_id or self.contains_stored_name(record.stored_name):
                continue
            self.append(record)
            added += 1

        self._records = self.sorted_records()
        logger.info(f"Image list rebuilt: {len(self)} images ({added} added, {len(stale)} dropped)")
        return len(self)

    def append(self, record: ImageRecord) -> None:
        self._records.append(record)
        self._by_id[record.id] = record
        self._by_stored_name[record.stored_name] = record

    def remove(self, image_id: str) -> bool:
        record = self._by_id.pop(image_id, None)
        if record is None:
            return False
        self._by_stored_name.pop(record.stored_name, None)
        self._records = [r for r in self._records if r.id != image_id]
        return True

    def find_by_id(self, image_id: str) -> Optional[ImageRecord]:
        return self._by_id.get(image_id)

    def page(self, page_number: int, page_size: int) -> Tuple[List[ImageRecord], int]:
        if page_size <= 0:
            raise ImageValidationError(f"Page size must be positive, got {page_size}")
        if page_number < 1:
            raise ImageValidationError(f"Page number must be 1 or greater, got {page_number}")
        start = (page_number - 1) * page_size
        return self.sorted_records()[start:start + page_size], len(self)
