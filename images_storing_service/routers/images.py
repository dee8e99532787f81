from typing import List, Optional

from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import JSONResponse

import crud, schemas
from config import Settings, get_settings
from ingestion import IngestionService
from logging_config import get_logger
from registry import ImageRegistry

logger = get_logger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["images"],
)

def get_registry(request: Request) -> ImageRegistry:
    return request.app.state.registry

def get_ingestion_service(request: Request) -> IngestionService:
    return request.app.state.ingestion

@router.post("/upload", response_model=schemas.ImageUploadResponse)
async def upload_image(
    image: Optional[UploadFile] = File(None),
    ingestion: IngestionService = Depends(get_ingestion_service),
):
    logger.info(f"Upload request for filename: '{image.filename if image else None}', content_type: '{image.content_type if image else None}'")
    record = await ingestion.ingest_single(image)
    return schemas.ImageUploadResponse(message="Image uploaded successfully", data=record)

@router.post("/upload/multiple", response_model=schemas.ImageBatchUploadResponse)
async def upload_images(
    images: Optional[List[UploadFile]] = File(None),
    ingestion: IngestionService = Depends(get_ingestion_service),
):
    logger.info(f"Batch upload request with {len(images or [])} file(s)")
    records = await ingestion.ingest_batch(images or [])
    return schemas.ImageBatchUploadResponse(
        message=f"Successfully uploaded {len(records)} images",
        data=records,
    )

@router.get("/images", response_model=schemas.ImageListResponse)
async def list_images(
    page: Optional[int] = None,
    limit: Optional[int] = None,
    registry: ImageRegistry = Depends(get_registry),
    current_settings: Settings = Depends(get_settings),
):
    page = current_settings.DEFAULT_PAGE if page is None else page
    limit = current_settings.DEFAULT_PAGE_LIMIT if limit is None else limit
    logger.debug(f"Listing images page={page} limit={limit}")
    images, total, total_pages = crud.list_images(registry, page=page, limit=limit)
    return schemas.ImageListResponse(
        data=schemas.ImageListData(
            images=images,
            total=total,
            page=page,
            limit=limit,
            total_pages=total_pages,
        )
    )

@router.get("/images/{image_id}", response_model=schemas.ImageResponse)
async def get_image(
    image_id: str,
    registry: ImageRegistry = Depends(get_registry),
):
    return schemas.ImageResponse(data=crud.get_image_by_id(registry, image_id))

@router.delete("/images/{image_id}", response_model=schemas.MessageResponse)
async def delete_image(
    image_id: str,
    ingestion: IngestionService = Depends(get_ingestion_service),
):
    logger.info(f"Delete request for image_id: {image_id}")
    await ingestion.delete(image_id)
    return schemas.MessageResponse(message="Image deleted successfully")

@router.post("/rebuild", response_model=schemas.RebuildResponse)
async def rebuild_image_list(registry: ImageRegistry = Depends(get_registry)):
    try:
        count = await registry.reconcile()
    except Exception as e:
        logger.exception("Image list rebuild failed")
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})
    return schemas.RebuildResponse(
        message=f"Image list rebuilt, found {count} images",
        count=count,
    )
