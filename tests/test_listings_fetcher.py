import threading
from datetime import datetime, timezone

import pytest

from listings_exporter.exceptions import ApplicationError, FetchCancelled, TransportError
from listings_exporter.services.listings_fetcher import (
    ListingsFetcher,
    dedupe_by_item_id,
    extract_items,
    has_more_items,
)
from conftest import FakeClient, make_items, selling_page


def _seller_list(items, has_more=None):
    response = {"Ack": "Success"}
    if items:
        response["ItemArray"] = {"Item": items[0] if len(items) == 1 else items}
    if has_more is not None:
        response["HasMoreItems"] = has_more
    return response


def _fetcher(responses, **kwargs):
    sleeps = []
    client = FakeClient(responses)
    fetcher = ListingsFetcher(client, sleep=sleeps.append, **kwargs)
    return fetcher, client, sleeps


def test_fetch_all_follows_has_more_until_empty_page():
    fetcher, client, sleeps = _fetcher([
        selling_page(make_items(1, 5), "true"),
        selling_page(make_items(6, 5), "true"),
        selling_page([], None),
    ])

    items = fetcher.fetch_all()

    assert [item["ItemID"] for item in items] == [str(i) for i in range(1, 11)]
    assert len(client.calls) == 3
    assert sleeps == [0.5, 0.5]


def test_fetch_all_stops_when_has_more_is_false():
    fetcher, client, sleeps = _fetcher([selling_page(make_items(1, 3), "false")])

    assert len(fetcher.fetch_all()) == 3
    assert len(client.calls) == 1
    assert sleeps == []


@pytest.mark.parametrize("flag", [None, "True", "1", ""])
def test_has_more_must_be_exactly_true(flag):
    fetcher, client, _ = _fetcher([selling_page(make_items(1, 2), flag)])

    fetcher.fetch_all()

    assert len(client.calls) == 1


def test_single_item_page_counts_as_one_item():
    fetcher, _, _ = _fetcher([selling_page(make_items(1, 1), "false")])

    assert fetcher.fetch_all() == [{"ItemID": "1", "Title": "Item 1"}]


def test_scalar_item_is_kept_and_pagination_continues():
    fetcher, client, _ = _fetcher([
        selling_page(["110554102811"], "true"),
        selling_page(make_items(2, 2), "false"),
    ])

    items = fetcher.fetch_all()

    assert items == ["110554102811", {"ItemID": "2", "Title": "Item 2"}, {"ItemID": "3", "Title": "Item 3"}]
    assert len(client.calls) == 2


def test_empty_first_page_returns_no_items():
    fetcher, client, _ = _fetcher([{"Ack": "Success"}])

    assert fetcher.fetch_all() == []
    assert len(client.calls) == 1


def test_request_body_pages_through_active_list():
    fetcher, client, _ = _fetcher([
        selling_page(make_items(1, 1), "true"),
        selling_page(make_items(2, 1), "false"),
    ])

    fetcher.fetch_all()

    assert [c["operation"] for c in client.calls] == ["GetMyeBaySelling", "GetMyeBaySelling"]
    first = client.calls[0]["body"]["ActiveList"]
    assert first["Include"] is True
    assert first["Sort"] == "TimeLeft"
    assert first["Pagination"] == {"EntriesPerPage": 200, "PageNumber": 1}
    assert client.calls[1]["body"]["ActiveList"]["Pagination"]["PageNumber"] == 2


def test_page_size_is_capped():
    fetcher, client, _ = _fetcher([selling_page([], None)], page_size=500)

    fetcher.fetch_all()

    assert client.calls[0]["body"]["ActiveList"]["Pagination"]["EntriesPerPage"] == 200


def test_error_aborts_fetch_with_page_context():
    fetcher, client, _ = _fetcher([
        selling_page(make_items(1, 5), "true"),
        ApplicationError("eBay API Error (Ack=Failure): 931: bad token", ack="Failure"),
    ])

    with pytest.raises(ApplicationError) as exc_info:
        fetcher.fetch_all()

    assert exc_info.value.page == 2
    assert exc_info.value.operation == "GetMyeBaySelling"
    assert "page=2" in str(exc_info.value)
    assert len(client.calls) == 2


def test_transport_error_keeps_existing_operation():
    fetcher, _, _ = _fetcher([TransportError("connection reset", operation="GetMyeBaySelling")])

    with pytest.raises(TransportError) as exc_info:
        fetcher.fetch_all()

    assert exc_info.value.page == 1
    assert exc_info.value.operation == "GetMyeBaySelling"


def test_cancelled_before_first_page():
    cancel = threading.Event()
    cancel.set()
    fetcher, client, _ = _fetcher([selling_page(make_items(1, 1), "true")], cancel_event=cancel)

    with pytest.raises(FetchCancelled):
        fetcher.fetch_all()
    assert client.calls == []


def test_cancel_during_inter_page_delay():
    cancel = threading.Event()

    class CancellingClient(FakeClient):
        def call(self, operation, body=None, cancel_event=None, timeout=None):
            response = super().call(operation, body, cancel_event, timeout)
            cancel.set()
            return response

    client = CancellingClient([selling_page(make_items(1, 2), "true"), selling_page(make_items(3, 2), "false")])
    fetcher = ListingsFetcher(client, inter_page_delay=30.0, cancel_event=cancel)

    with pytest.raises(FetchCancelled):
        fetcher.fetch_all()
    assert len(client.calls) == 1


def test_fetch_time_window_request_body():
    fetcher, client, sleeps = _fetcher([
        _seller_list(make_items(1, 2), "true"),
        _seller_list(make_items(3, 1)),
    ])
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    end = datetime(2024, 4, 30, 12, 30, tzinfo=timezone.utc)

    items = fetcher.fetch_time_window(start, end)

    assert [item["ItemID"] for item in items] == ["1", "2", "3"]
    body = client.calls[0]["body"]
    assert client.calls[0]["operation"] == "GetSellerList"
    assert body["StartTimeFrom"] == "2024-01-01T00:00:00.000Z"
    assert body["StartTimeTo"] == "2024-04-30T12:30:00.000Z"
    assert body["GranularityLevel"] == "Coarse"
    assert body["DetailLevel"] == "ReturnAll"
    assert body["Pagination"] == {"EntriesPerPage": 100, "PageNumber": 1}
    assert sleeps == [0.3]


def test_historical_search_stops_on_empty_window_after_minimum():
    fetcher, client, sleeps = _fetcher([_seller_list([]) for _ in range(10)])

    items = fetcher.fetch_historical(now=datetime(2024, 6, 1, tzinfo=timezone.utc))

    assert items == []
    assert len(client.calls) == 4
    assert sleeps == [1.0, 1.0, 1.0]


def test_historical_windows_walk_backwards():
    fetcher, client, _ = _fetcher([
        _seller_list(make_items(1, 2)),
        _seller_list(make_items(3, 1)),
        _seller_list([]),
        _seller_list([]),
    ])

    items = fetcher.fetch_historical(now=datetime(2024, 6, 1, tzinfo=timezone.utc))

    assert [item["ItemID"] for item in items] == ["1", "2", "3"]
    assert len(client.calls) == 4
    first, second = client.calls[0]["body"], client.calls[1]["body"]
    assert first["StartTimeTo"] == "2024-06-01T00:00:00.000Z"
    assert first["StartTimeFrom"] == "2024-02-02T00:00:00.000Z"
    assert second["StartTimeTo"] == "2024-02-01T00:00:00.000Z"


def test_historical_search_respects_max_windows():
    fetcher, client, sleeps = _fetcher([_seller_list(make_items(i, 1)) for i in range(1, 3)])

    items = fetcher.fetch_historical(now=datetime(2024, 6, 1, tzinfo=timezone.utc), max_windows=2)

    assert len(items) == 2
    assert len(client.calls) == 2
    assert sleeps == [1.0]


def test_seller_listings_skip_history_when_enough_active():
    fetcher, client, _ = _fetcher([selling_page(make_items(1, 12), "false")])

    assert len(fetcher.fetch_seller_listings()) == 12
    assert len(client.calls) == 1


def test_seller_listings_add_history_and_dedupe():
    fetcher, client, _ = _fetcher([
        selling_page(make_items(1, 2), "false"),
        _seller_list(make_items(2, 3)),
        _seller_list([]),
        _seller_list([]),
        _seller_list([]),
    ])

    items = fetcher.fetch_seller_listings()

    assert [item["ItemID"] for item in items] == ["1", "2", "3", "4"]
    assert [c["operation"] for c in client.calls] == ["GetMyeBaySelling"] + ["GetSellerList"] * 4


def test_extract_items_and_has_more():
    assert extract_items(None) == []
    assert extract_items({"ItemArray": ""}) == []
    assert extract_items({"ItemArray": {"Item": [{"ItemID": "1"}, "", None]}}) == [{"ItemID": "1"}, ""]
    assert extract_items({"ItemArray": {"Item": "110554102811"}}) == ["110554102811"]
    assert has_more_items({"HasMoreItems": "true"}) is True
    assert has_more_items({"HasMoreItems": "false"}) is False
    assert has_more_items("true") is False


def test_dedupe_keeps_first_occurrence():
    items = [{"ItemID": "1", "v": "a"}, {"ItemID": "2"}, {"ItemID": "1", "v": "b"}, {"Title": "no id"}]

    assert dedupe_by_item_id(items) == [{"ItemID": "1", "v": "a"}, {"ItemID": "2"}, {"Title": "no id"}]
