from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from exceptions import StorageError
from logging_config import get_logger
from registry import ImageRegistry
from routers.images import get_registry

logger = get_logger(__name__)

router = APIRouter(
    prefix="/uploads",
    tags=["uploads"],
)

@router.get("/{stored_name}")
async def serve_upload(
    stored_name: str,
    registry: ImageRegistry = Depends(get_registry),
):
    try:
        path = registry.store.path_for(stored_name)
        file_stat = await registry.store.stat(stored_name)
    except StorageError:
        logger.warning(f"Upload not found: {stored_name}")
        raise HTTPException(status_code=404, detail="File not found")
    if not file_stat.is_file:
        raise HTTPException(status_code=404, detail="File not found")

    logger.debug(f"Serving file from path: {path}")
    return FileResponse(path=path)
