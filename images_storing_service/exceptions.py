class ImageServiceError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ImageValidationError(ImageServiceError):
    """Bad or missing file, disallowed type, size or batch over the limit, bad paging."""
    status_code = 400


class ImageNotFoundError(ImageServiceError):
    status_code = 404

    def __init__(self, image_id: str):
        super().__init__(f"Image not found: {image_id}")
        self.image_id = image_id


class StorageError(ImageServiceError):
    """Filesystem read, write or delete failure."""
    status_code = 500


class UnauthorizedOriginError(Exception):
    def __init__(self, origin: str):
        super().__init__(f"Message from unauthorized origin: {origin}")
        self.origin = origin
