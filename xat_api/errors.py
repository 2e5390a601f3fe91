class XatApiError(Exception):
    """Base class for every error raised by the chat service."""


class ValidationError(XatApiError):
    """Malformed client input, e.g. a bad identifier or empty text."""


class NotFoundError(XatApiError):
    """A well-formed identifier that does not match any stored record."""


class UpstreamError(XatApiError):
    """The inference server could not produce a usable answer."""


class UpstreamUnavailable(UpstreamError):
    """Connection failure, timeout or non-success status from the upstream."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamFormatError(UpstreamError):
    """The upstream answered, but a body or chunk could not be parsed."""


class SentimentFormatError(XatApiError):
    """Model output for a sentiment request is not a usable JSON object."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw
