import secrets
import string
from pathlib import Path
from typing import List, Optional, Sequence

from fastapi import UploadFile

from config import Settings
from exceptions import ImageNotFoundError, ImageValidationError, StorageError
from logging_config import get_logger
from registry import Clock, ImageRegistry
from schemas import ImageRecord, build_stored_name, public_path_for
from storage import ImageStore

logger = get_logger(__name__)

ID_TOKEN_ALPHABET = string.ascii_lowercase + string.digits
ID_TOKEN_LENGTH = 9


def random_id_token(length: int = ID_TOKEN_LENGTH) -> str:
    return "".join(secrets.choice(ID_TOKEN_ALPHABET) for _ in range(length))


def safe_original_name(filename: Optional[str]) -> str:
    name = Path(filename or "").name
    if not name or name in (".", ".."):
        raise ImageValidationError("No file was uploaded")
    return name


class IngestionService:
    def __init__(
        self,
        registry: ImageRegistry,
        store: ImageStore,
        settings: Settings,
        clock: Optional[Clock] = None,
    ):
        self.registry = registry
        self.store = store
        self.settings = settings
        self.clock = clock or registry.clock

    def validate(self, filename: str, content_type: Optional[str]) -> None:
        """Both the extension and the declared content type must name an allowed image type."""
        allowed = {t.lower() for t in self.settings.ALLOWED_IMAGE_TYPES}
        extension = Path(filename).suffix[1:].lower()
        declared = (content_type or "").lower().split(";")[0].strip()
        major, _, subtype = declared.partition("/")
        if extension not in allowed or major != "image" or subtype not in allowed:
            logger.warning(f"Rejected upload '{filename}' with content type '{content_type}'")
            raise ImageValidationError(
                f"Only image files are allowed ({', '.join(self.settings.ALLOWED_IMAGE_TYPES)})"
            )

    def check_size(self, upload: UploadFile) -> None:
        # the streaming write enforces the limit again when size is unknown
        if upload.size is not None and upload.size > self.settings.max_file_size_bytes:
            raise ImageValidationError(
                f"File '{upload.filename}' exceeds the size limit of {self.settings.MAX_FILE_SIZE_MB} MB"
            )

    async def _allocate_timestamp(self, original_name: str, taken: set) -> int:
        timestamp_ms = int(self.clock().timestamp() * 1000)
        # the millis prefix becomes the id after a rebuild, so it must be free too
        while (
            self.registry.timestamp_in_use(str(timestamp_ms))
            or str(timestamp_ms) in taken
            or await self.store.exists(build_stored_name(timestamp_ms, original_name))
        ):
            timestamp_ms += 1
        return timestamp_ms

    async def _store(self, upload: UploadFile, original_name: str, image_id: str, timestamp_ms: int) -> ImageRecord:
        stored_name = build_stored_name(timestamp_ms, original_name)
        logger.info(f"Saving upload '{original_name}' as {stored_name}")
        size = await self.store.write_upload(stored_name, upload, self.settings.max_file_size_bytes)
        return ImageRecord(
            id=image_id,
            stored_name=stored_name,
            original_name=original_name,
            size_bytes=size,
            mime_type=upload.content_type,
            public_path=public_path_for(stored_name),
            uploaded_at=self.clock(),
        )

    async def ingest_single(self, upload: Optional[UploadFile]) -> ImageRecord:
        if upload is None:
            raise ImageValidationError("No file was uploaded")
        original_name = safe_original_name(upload.filename)
        self.validate(original_name, upload.content_type)
        self.check_size(upload)

        async with self.registry.lock:
            timestamp_ms = await self._allocate_timestamp(original_name, set())
            record = await self._store(upload, original_name, str(timestamp_ms), timestamp_ms)
            self.registry.append(record)
        logger.info(f"Uploaded image {record.id} ('{record.original_name}', {record.size_bytes} bytes)")
        return record

    async def ingest_batch(self, uploads: Sequence[UploadFile]) -> List[ImageRecord]:
        """Store every file of a batch or none of them."""
        if not uploads:
            raise ImageValidationError("No files were uploaded")
        if len(uploads) > self.settings.MAX_BATCH_FILES:
            raise ImageValidationError(
                f"Too many files: {len(uploads)} (at most {self.settings.MAX_BATCH_FILES} per request)"
            )
        names = [safe_original_name(upload.filename) for upload in uploads]
        for upload, name in zip(uploads, names):
            self.validate(name, upload.content_type)
            self.check_size(upload)

        records: List[ImageRecord] = []
        async with self.registry.lock:
            taken: set = set()
            try:
                for upload, name in zip(uploads, names):
                    timestamp_ms = await self._allocate_timestamp(name, taken)
                    taken.add(str(timestamp_ms))
                    image_id = f"{timestamp_ms}_{random_id_token()}"
                    records.append(await self._store(upload, name, image_id, timestamp_ms))
            except (ImageValidationError, StorageError):
                logger.warning(f"Batch upload failed after {len(records)} file(s); rolling back")
                for record in records:
                    await self.store.discard(record.stored_name)
                raise
            for record in records:
                self.registry.append(record)
        logger.info(f"Uploaded batch of {len(records)} images")
        return records

    async def delete(self, image_id: str) -> None:
        async with self.registry.lock:
            record = self.registry.find_by_id(image_id)
            if record is None:
                logger.warning(f"Delete requested for unknown image {image_id}")
                raise ImageNotFoundError(image_id)
            await self.store.delete(record.stored_name)
            self.registry.remove(image_id)
        logger.info(f"Deleted image {image_id} ('{record.original_name}')")
