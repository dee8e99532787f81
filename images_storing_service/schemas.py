import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List, Tuple

from pydantic import BaseModel, ConfigDict, Field

STORED_NAME_PATTERN = re.compile(r"^([0-9]+)_(.+)$", re.DOTALL)
UPLOADS_URL_PREFIX = "/uploads"


def parse_stored_name(stored_name: str) -> Optional[Tuple[str, str]]:
    """Split ``<unixMillis>_<originalName>`` on the first underscore.

    Returns ``None`` when the name does not follow the pattern. The original
    name keeps any further underscores.
    """
    match = STORED_NAME_PATTERN.match(stored_name)
    if not match:
        return None
    return match.group(1), match.group(2)


def build_stored_name(timestamp_ms: int, original_name: str) -> str:
    return f"{timestamp_ms}_{original_name}"


def public_path_for(stored_name: str) -> str:
    return f"{UPLOADS_URL_PREFIX}/{stored_name}"


def mime_type_from_extension(filename: str) -> str:
    # extension kept verbatim, no case normalisation
    return f"image/{Path(filename).suffix[1:]}"


class ImageRecord(BaseModel):
    id: str
    stored_name: str = Field(alias="filename")
    original_name: str = Field(alias="originalname")
    size_bytes: int = Field(alias="size", ge=0)
    mime_type: str = Field(alias="mimetype")
    public_path: str = Field(alias="url")
    uploaded_at: datetime = Field(alias="uploadTime")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @classmethod
    def from_stored_file(cls, stored_name: str, size_bytes: int) -> Optional["ImageRecord"]:
        parsed = parse_stored_name(stored_name)
        if parsed is None:
            return None
        timestamp, original_name = parsed
        try:
            uploaded_at = datetime.fromtimestamp(int(timestamp) / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
        return cls(
            id=timestamp,
            stored_name=stored_name,
            original_name=original_name,
            size_bytes=size_bytes,
            mime_type=mime_type_from_extension(stored_name),
            public_path=public_path_for(stored_name),
            uploaded_at=uploaded_at,
        )


class ImageListData(BaseModel):
    images: List[ImageRecord]
    total: int
    page: int
    limit: int
    total_pages: int = Field(alias="totalPages")

    model_config = ConfigDict(populate_by_name=True)


class ImageUploadResponse(BaseModel):
    success: bool = True
    message: str
    data: ImageRecord


class ImageBatchUploadResponse(BaseModel):
    success: bool = True
    message: str
    data: List[ImageRecord]


class ImageListResponse(BaseModel):
    success: bool = True
    data: ImageListData


class ImageResponse(BaseModel):
    success: bool = True
    data: ImageRecord


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class HealthResponse(MessageResponse):
    timestamp: datetime


class RebuildResponse(MessageResponse):
    count: int
