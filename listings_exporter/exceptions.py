"""
Exporter error taxonomy

Request-level errors carry the Trading API operation and the page number
that was being fetched when they were raised.
"""
from typing import Any, Dict, List, Optional


class ExporterError(Exception):
    """Base class for all exporter errors"""


class RequestError(ExporterError):
    """Failure of a single Trading API request"""

    def __init__(self, message: str, operation: Optional[str] = None, page: Optional[int] = None):
        super().__init__(message)
        self.operation = operation
        self.page = page

    def with_context(self, operation: Optional[str] = None, page: Optional[int] = None) -> "RequestError":
        if operation and not self.operation:
            self.operation = operation
        if page is not None and self.page is None:
            self.page = page
        return self

    def __str__(self) -> str:
        message = super().__str__()
        context = []
        if self.operation:
            context.append(f"operation={self.operation}")
        if self.page is not None:
            context.append(f"page={self.page}")
        return f"{message} ({', '.join(context)})" if context else message


class TransportError(RequestError):
    """Network-level failure (connection, timeout); potentially transient"""


class ProtocolError(RequestError):
    """Non-success HTTP status"""

    def __init__(self, message: str, status_code: int, body: str = "", **kwargs: Any):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.body = body


class DecodeError(RequestError):
    """Response body could not be parsed into a response tree"""


class ApplicationError(RequestError):
    """Well-formed response whose Ack reports Failure or PartialFailure"""

    def __init__(self, message: str, ack: str, errors: Optional[List[Dict[str, Any]]] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.ack = ack
        self.errors = errors or []


class FetchCancelled(ExporterError):
    """The fetch was cancelled through its cancellation event"""


class EmptyDataset(ExporterError):
    """Nothing to export"""


class WriteError(ExporterError):
    """The spreadsheet could not be written"""


class ConfigurationError(ExporterError):
    """Required configuration is missing or invalid"""
