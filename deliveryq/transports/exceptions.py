"""Custom exceptions for mail transports."""


class TransportError(Exception):
    """Base exception for all mail transport errors.

    The queue processor catches this per item and records it as a failed
    delivery attempt. It never stops the rest of the cycle.
    """

    pass


class TransportHTTPError(TransportError):
    """Mail provider API returned a 4xx or 5xx status, or the request failed."""

    def __init__(self, message: str, status_code: int, url: str) -> None:
        """Initialize HTTP error with status code and URL.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (0 when no response was received)
            url: URL that failed
        """
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class TransportTimeoutError(TransportError):
    """Send did not complete within the configured timeout."""

    def __init__(self, message: str, url: str) -> None:
        super().__init__(message)
        self.url = url


class TransportResponseError(TransportError):
    """Provider response could not be parsed or lacked a message id."""

    pass


class TransportConfigurationError(TransportError):
    """Invalid transport configuration (missing host, bad timeout, etc.)."""

    pass
