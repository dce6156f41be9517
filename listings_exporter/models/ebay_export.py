"""
Models for the listings export pipeline
"""
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

# Response tree: XML and JSON bodies both decode into plain nested values
Node = Union[None, str, Dict[str, Any], List[Any]]
RawRecord = Dict[str, Any]
FlatRow = Dict[str, str]


class PageResult(BaseModel):
    """One decoded page of a paginated call"""
    page: int
    items: List[Any] = Field(default_factory=list)
    has_more: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.items


class ExportResult(BaseModel):
    """What the spreadsheet sink reports after a write"""
    filename: str
    record_count: int
    file_size: int


@dataclass
class RunMetrics:
    """Request/error counters owned by the driver and read at the end of a run"""
    requests: int = 0
    errors: int = 0
    started_at: float = field(default_factory=time.monotonic)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_request(self) -> None:
        with self._lock:
            self.requests += 1

    def record_error(self) -> None:
        with self._lock:
            self.errors += 1

    def elapsed(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.monotonic()) - self.started_at

    def as_dict(self) -> Dict[str, Any]:
        return {
            "duration": round(self.elapsed(), 1),
            "api_requests": self.requests,
            "errors": self.errors,
        }
