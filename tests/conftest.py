from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import pytest

from listings_exporter.config.ebay_config import ExportSettings
from listings_exporter.models.ebay_export import RunMetrics

FIXTURES = Path(__file__).parent / "fixtures"


def read_fixture(name: str) -> str:
    return (FIXTURES / name).read_text(encoding="utf-8")


def make_items(start: int, count: int) -> List[Dict[str, Any]]:
    return [{"ItemID": str(start + i), "Title": f"Item {start + i}"} for i in range(count)]


def selling_page(items: List[Dict[str, Any]], has_more: Optional[str], list_kind: str = "ActiveList") -> Dict[str, Any]:
    """Decoded GetMyeBaySelling response with the given items"""
    container: Dict[str, Any] = {}
    if items:
        container["ItemArray"] = {"Item": items[0] if len(items) == 1 else items}
    if has_more is not None:
        container["HasMoreItems"] = has_more
    return {"Ack": "Success", list_kind: container}


class FakeClient:
    """Stands in for TradingApiClient: returns scripted responses in order"""

    def __init__(self, responses: List[Any]):
        self.responses = list(responses)
        self.calls: List[Dict[str, Any]] = []
        self.metrics = RunMetrics()

    def call(self, operation, body=None, cancel_event=None, timeout=None):
        self.calls.append({"operation": operation, "body": body})
        self.metrics.record_request()
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def http_response(text: str, status_code: int = 200, content_type: str = "text/xml") -> Mock:
    response = Mock()
    response.status_code = status_code
    response.text = text
    response.headers = {"Content-Type": content_type}
    return response


@pytest.fixture
def settings(tmp_path) -> ExportSettings:
    return ExportSettings(
        access_token="v^1.1#i^1#test-token",
        app_id="TestApp-PRD-123",
        site_id="0",
        environment="sandbox",
        output_file=str(tmp_path / "listings.xlsx"),
    )
