class AnalyticsProxyException(Exception):
    """Base exception for all analytics proxy errors."""

    pass


class ContentDecodeError(AnalyticsProxyException):
    """Exception raised when a response body cannot be decoded for its declared content encoding."""

    def __init__(self, encoding: str, message: str):
        self.encoding = encoding
        super().__init__(f"Failed to decode {encoding} content: {message}")
