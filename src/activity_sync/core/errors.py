from fastapi import HTTPException, status


class ConfigurationError(RuntimeError):
    """A required secret or credential is missing or malformed."""


class TokenDecryptionError(ValueError):
    """An encrypted token blob is malformed or failed authentication."""


class StoreError(RuntimeError):
    """The connection/activity store rejected a read or write."""


class BadRequestError(HTTPException):
    def __init__(self, message: str = "Bad request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


class UnauthorizedError(HTTPException):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=message)


class NotFoundError(HTTPException):
    def __init__(self, message: str = "Not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=message)


class ServerError(HTTPException):
    def __init__(self, message: str = "Internal server error"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=message)
