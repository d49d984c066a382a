"""Error types surfaced by the API layer."""


class SoGoodError(Exception):
    """Base class for errors mapped to HTTP responses."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(SoGoodError):
    """Required credentials or settings are missing."""

    status_code = 400


class NotFoundError(SoGoodError):
    """A requested record does not exist."""

    status_code = 404


class InvalidPayloadError(SoGoodError):
    """A request body is malformed or missing required fields."""

    status_code = 400


class StoreError(SoGoodError):
    """The row store answered with a non-2xx status."""

    status_code = 500

    def __init__(self, message: str, status: int | None = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body[:500]


class ExportError(SoGoodError):
    """A document export step failed."""

    def __init__(self, message: str, code: str, status_code: int = 500):
        super().__init__(message)
        self.code = code
        self.status_code = status_code
