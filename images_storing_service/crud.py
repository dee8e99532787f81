import math
from typing import List, Tuple

from exceptions import ImageNotFoundError
from registry import ImageRegistry
from schemas import ImageRecord

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10

def list_images(registry: ImageRegistry, page: int = DEFAULT_PAGE, limit: int = DEFAULT_LIMIT) -> Tuple[List[ImageRecord], int, int]:
    images, total = registry.page(page, limit)
    return images, total, math.ceil(total / limit)

def get_image_by_id(registry: ImageRegistry, image_id: str) -> ImageRecord:
    image = registry.find_by_id(image_id)
    if image is None:
        raise ImageNotFoundError(image_id)
    return image
