from __future__ import annotations


class ImageServiceError(RuntimeError):
    """Базовая ошибка сервиса.

    ``message`` уходит клиенту как есть, ``detail`` только в лог.
    """

    status_code = 500
    message = "Internal server error"

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.message
        super().__init__(self.detail)


class ValidationError(ImageServiceError):
    status_code = 400
    message = "Missing required fields"


class NothingToUpdate(ValidationError):
    message = "Missing fields to update"


class ParseError(ImageServiceError):
    status_code = 400
    message = "Malformed multipart body"


class AuthError(ImageServiceError):
    status_code = 401
    message = "Unauthorized"


class ImageNotFound(ImageServiceError):
    status_code = 404
    message = "Image not found"


class NoImages(ImageNotFound):
    message = "No images found"


class StoreError(ImageServiceError):
    status_code = 500
    message = "Internal server error"


class UpdateFailed(StoreError):
    message = "Failed to update"
