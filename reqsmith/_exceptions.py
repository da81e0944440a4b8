from __future__ import annotations


class InvalidUrl(ValueError):
    """The base URL of a request could not be parsed.

    Raised before any network activity takes place. Every other failure
    is reported through ``ApiResponse.error`` instead of an exception.
    """

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class CurlParseError(ValueError):
    """A curl command line could not be turned into a request."""
