"""
eBay Trading API client

One call = one rate-limited, authenticated POST. The client never retries;
wrap calls with `with_retries` when a caller wants resilience.
"""
import json
import logging
import threading
import time
import xml.etree.ElementTree as ET
from typing import Any, Callable, Dict, List, Optional, TypeVar

import requests

from listings_exporter.config.ebay_config import (
    EBAY_API_VERSION,
    EBAY_COMPATIBILITY_LEVEL,
    EBAY_NAMESPACE,
    ExportSettings,
)
from listings_exporter.exceptions import (
    ApplicationError,
    DecodeError,
    ProtocolError,
    RequestError,
    TransportError,
)
from listings_exporter.models.ebay_export import Node, RunMetrics
from listings_exporter.services.rate_limiter import RateLimiter
from listings_exporter.services.response_decoder import TEXT_KEY, as_list, decode_response

logger = logging.getLogger(__name__)

T = TypeVar("T")

FAILURE_ACKS = ("Failure", "PartialFailure")


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _append_xml(parent: ET.Element, key: str, value: Any) -> None:
    for item in value if isinstance(value, list) else [value]:
        child = ET.SubElement(parent, key)
        if isinstance(item, dict):
            for sub_key, sub_value in item.items():
                if sub_key == TEXT_KEY:
                    child.text = _scalar_text(sub_value)
                else:
                    _append_xml(child, sub_key, sub_value)
        elif item is not None:
            child.text = _scalar_text(item)


def build_xml_request(call_name: str, body: Optional[Dict[str, Any]] = None, version: str = EBAY_API_VERSION) -> bytes:
    """Wrap a request body tree in the <{call_name}Request> envelope"""
    root = ET.Element(f"{call_name}Request", {"xmlns": EBAY_NAMESPACE})
    ET.SubElement(root, "Version").text = version
    for key, value in (body or {}).items():
        _append_xml(root, key, value)
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def build_json_request(call_name: str, body: Optional[Dict[str, Any]] = None, version: str = EBAY_API_VERSION) -> bytes:
    """JSON flavour of the request envelope"""
    envelope = {"xmlns": EBAY_NAMESPACE, "Version": version}
    envelope.update(body or {})
    return json.dumps({f"{call_name}Request": envelope}, default=_scalar_text).encode("utf-8")


def _error_message(error: Dict[str, Any]) -> str:
    code = error.get("ErrorCode") or ""
    text = error.get("LongMessage") or error.get("ShortMessage") or ""
    return f"{code}: {text}"


def _ensure_success(root: Dict[str, Node], call_name: str) -> None:
    """Check the Ack field of a decoded Trading API response"""
    ack = root.get("Ack") or ""
    errors: List[Dict[str, Any]] = [e for e in as_list(root.get("Errors")) if isinstance(e, dict)]

    if ack in FAILURE_ACKS:
        details = "; ".join(_error_message(e) for e in errors) or "no error details"
        raise ApplicationError(f"eBay API Error (Ack={ack}): {details}", ack=ack, errors=errors, operation=call_name)

    if ack == "Warning":
        logger.warning(f"{call_name} succeeded with warnings: {'; '.join(_error_message(e) for e in errors)}")


class TradingApiClient:
    """Pure I/O client for the Trading API endpoint"""

    def __init__(
        self,
        settings: ExportSettings,
        rate_limiter: Optional[RateLimiter] = None,
        metrics: Optional[RunMetrics] = None,
        session: Optional[requests.Session] = None,
    ):
        self.settings = settings
        self.rate_limiter = rate_limiter or RateLimiter(max_requests=settings.requests_per_second)
        self.metrics = metrics or RunMetrics()
        self.session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        # No retry adapter: retry policy belongs to the caller
        session = requests.Session()
        session.headers.update({"User-Agent": "ebay-listings-exporter/1.0"})
        return session

    def _build_headers(self, call_name: str) -> Dict[str, str]:
        """Build headers for eBay Trading API"""
        encoding = self.settings.request_encoding
        return {
            "Content-Type": "application/json" if encoding == "JSON" else "text/xml",
            "X-EBAY-API-CALL-NAME": call_name,
            "X-EBAY-API-SITEID": self.settings.site_id,
            "X-EBAY-API-APP-NAME": self.settings.app_id,
            "X-EBAY-API-VERSION": EBAY_API_VERSION,
            "X-EBAY-API-COMPATIBILITY-LEVEL": EBAY_COMPATIBILITY_LEVEL,
            "X-EBAY-API-REQUEST-ENCODING": encoding,
            "X-EBAY-API-IAF-TOKEN": self.settings.access_token,
        }

    def _build_payload(self, call_name: str, body: Optional[Dict[str, Any]]) -> bytes:
        if self.settings.request_encoding == "JSON":
            return build_json_request(call_name, body)
        return build_xml_request(call_name, body)

    def call(
        self,
        operation: str,
        body: Optional[Dict[str, Any]] = None,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Node]:
        """
        Send one Trading API call and return the decoded <{operation}Response> node.

        Args:
            operation: Trading API call name (e.g. GetMyeBaySelling)
            body: Request body tree, wrapped in the request envelope
            cancel_event: Aborts the rate limiter wait when set
            timeout: Per-call deadline in seconds (defaults to settings)

        Raises:
            TransportError, ProtocolError, DecodeError, ApplicationError
        """
        self.rate_limiter.acquire_slot(cancel_event)
        self.metrics.record_request()

        try:
            return self._execute(operation, body, timeout or self.settings.request_timeout)
        except RequestError as e:
            self.metrics.record_error()
            e.with_context(operation=operation)
            logger.error(f"{operation} failed: {e}")
            raise

    def _execute(self, operation: str, body: Optional[Dict[str, Any]], timeout: float) -> Dict[str, Node]:
        start = time.time()
        try:
            response = self.session.post(
                self.settings.endpoint,
                data=self._build_payload(operation, body),
                headers=self._build_headers(operation),
                timeout=timeout,
            )
        except requests.RequestException as e:
            raise TransportError(f"HTTP request failed for {operation}: {e}") from e

        if not 200 <= response.status_code < 300:
            raise ProtocolError(
                f"{operation} returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=(response.text or "")[:500],
            )

        tree = decode_response(response.text, response.headers.get("Content-Type", ""))
        root = tree.get(f"{operation}Response")
        if not isinstance(root, dict):
            raise DecodeError(f"Invalid response format for {operation}")

        _ensure_success(root, operation)
        logger.debug(f"{operation} completed in {time.time() - start:.2f} seconds")
        return root


def with_retries(
    func: Callable[[], T],
    attempts: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call func, retrying transport and HTTP status failures with exponential backoff.

    Application and decode errors are not retried.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except (TransportError, ProtocolError) as e:
            if attempt == attempts:
                logger.error(f"Request failed permanently after {attempts} attempts: {e}")
                raise
            wait_time = (2 ** attempt) * base_delay
            logger.warning(f"Request failed (attempt {attempt}/{attempts}): {e}. Retrying in {wait_time}s...")
            sleep(wait_time)
    raise ValueError("attempts must be at least 1")
