from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager

from config import settings
from exceptions import ImageServiceError
from ingestion import IngestionService
from registry import ImageRegistry
from routers import images as images_router
from routers import uploads as uploads_router
from logging_config import get_logger
from schemas import HealthResponse
from storage import ImageStore

logger = get_logger(__name__)

async def build_services(app: FastAPI):
    store = ImageStore(settings.UPLOAD_DIR)
    await store.ensure_directory()
    registry = ImageRegistry(store)
    app.state.registry = registry
    app.state.ingestion = IngestionService(registry, store, settings)
    count = await registry.reconcile()
    logger.info(f"Registry ready with {count} images from {settings.UPLOAD_DIR}")

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Images Storing Service starting up...")
    await build_services(app)
    logger.info(f"Upload API: {settings.PUBLIC_BASE_URL}/api/upload")
    logger.info(f"Images API: {settings.PUBLIC_BASE_URL}/api/images")
    yield
    logger.info("Images Storing Service shutting down...")

app = FastAPI(
    title="Images Storing Service",
    version="0.1.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(images_router.router)
app.include_router(uploads_router.router)

@app.exception_handler(ImageServiceError)
async def image_service_error_handler(request: Request, exc: ImageServiceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc.__cause__)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    messages = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors())
    return JSONResponse(status_code=400, content={"error": messages})

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    detail = "API path not found" if exc.status_code == 404 and exc.detail == "Not Found" else exc.detail
    return JSONResponse(status_code=exc.status_code, content={"error": detail}, headers=getattr(exc, "headers", None))

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": str(exc)})

@app.get("/api/health", response_model=HealthResponse, tags=["Health"])
async def health():
    return HealthResponse(message="Backend service is running", timestamp=datetime.now(timezone.utc))

@app.get("/ping", tags=["Health"])
async def ping():
    logger.debug("Ping endpoint was called")
    return {"ping": "pong! from ISS"}

@app.get("/")
async def read_root():
    return {"message": "Welcome to the Images Storing Service API"}

if __name__ == "__main__":
    import uvicorn
    logger.info(f"Starting ISS on {settings.ISS_HOST}:{settings.ISS_PORT}")
    uvicorn.run("main:app", host=settings.ISS_HOST, port=settings.ISS_PORT, reload=True)
