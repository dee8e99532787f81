from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path
from typing import List

env_path = Path(__file__).parent / ".env"

class Settings(BaseSettings):
    ISS_HOST: str = "0.0.0.0"
    ISS_PORT: int = 3001
    UPLOAD_DIR: Path = Path("uploads")
    PUBLIC_BASE_URL: str = "http://localhost:3001"
    MAX_FILE_SIZE_MB: int = 10
    MAX_BATCH_FILES: int = 10
    ALLOWED_IMAGE_TYPES: List[str] = ["jpeg", "jpg", "png", "gif", "webp"]
    DEFAULT_PAGE: int = 1
    DEFAULT_PAGE_LIMIT: int = 10
    CORS_ORIGINS: List[str] = ["*"]
    GALLERY_ORIGIN: str = "http://localhost:3003"
    VIEWER_ORIGIN: str = "http://localhost:3004"
    VIEWER2_ORIGIN: str = "http://localhost:3005"
    VIEWER_DISPLAY_DELAY_MS: int = 300
    VIEWER2_DISPLAY_DELAY_MS: int = 500
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=env_path, extra='ignore')

    @property
    def max_file_size_bytes(self) -> int:
        return self.MAX_FILE_SIZE_MB * 1024 * 1024

settings = Settings()

def get_settings() -> Settings:
    return settings
