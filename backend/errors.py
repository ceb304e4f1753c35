# backend/errors.py
from typing import Optional


class ServiceError(Exception):
    """
    Base error for the service.
    `public_message` is what the client sees; str(exc) is the detail for the log.
    """

    status_code: int = 500
    public_message: Optional[str] = None

    def __init__(self, detail: str = "", public_message: Optional[str] = None):
        super().__init__(detail or self.__class__.__name__)
        if public_message is not None:
            self.public_message = public_message


class UnauthorizedError(ServiceError):
    status_code = 401
    public_message = "Unauthorized"


class UploadError(ServiceError):
    status_code = 400
    public_message = "Invalid upload"


class GenerationError(ServiceError):
    """Anything that went wrong between us and the image backend."""


class BackendUnavailableError(GenerationError):
    pass


class BackendResponseError(GenerationError):
    pass


class JobChannelError(GenerationError):
    pass


class JobTimeoutError(GenerationError):
    public_message = "Generation timed out. Please try again."


class ModelLoadingError(GenerationError):
    status_code = 503
    public_message = "Model is loading... please try again in a minute."
