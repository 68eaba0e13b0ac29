"""Tests for burp_history/filters.py"""

from burp_history.filters import (
    cdn_static_asset,
    failed_exchange,
    filter_stats,
    host_matches,
    matches_domain,
    noise,
    noise_reason,
    static_asset,
    tracking_host,
    tracking_path,
)
from burp_history.models import EntryDraft, HttpMessage, MessageKind, StartLine
from burp_history.query import query
from burp_history.store import EntryStore


def _response(status=200, body=b"ok body here"):
    return HttpMessage(
        kind=MessageKind.RESPONSE,
        start_line=StartLine(version="HTTP/1.1", status=status),
        body=body,
    )


def _store(*rows):
    store = EntryStore()
    for row in rows:
        row.setdefault("response", _response())
        store.insert(EntryDraft(**row))
    store.freeze()
    return store


class TestMatchesDomain:
    def test_exact(self):
        assert matches_domain("analytics.com", "analytics.com")

    def test_subdomain(self):
        assert matches_domain("www.Analytics.com", "analytics.com")

    def test_suffix_is_not_subdomain(self):
        assert not matches_domain("myanalytics.com", "analytics.com")


class TestNoisePredicates:
    def setup_method(self):
        self.store = _store(
            dict(host="app.example.com", method="GET", path="/dashboard"),
            dict(host="www.google-analytics.com", method="POST", path="/g/collect"),
            dict(host="app.example.com", method="GET", path="/pixel?id=3"),
            dict(host="d1.cloudfront.net", method="GET", path="/static/app.js"),
            dict(host="d1.cloudfront.net", method="GET", path="/api/data", mime_type="JSON"),
            dict(host="app.example.com", method="GET", path="/logo", mime_type="PNG"),
        )

    def _ids(self, predicate):
        return [entry.id for entry in query(self.store, predicate)]

    def test_host_matches(self):
        assert self._ids(host_matches("example.com")) == [1, 3, 6]

    def test_tracking_host(self):
        assert self._ids(tracking_host()) == [2]

    def test_tracking_path(self):
        assert self._ids(tracking_path()) == [2, 3]

    def test_static_asset_by_extension_or_mime(self):
        assert self._ids(static_asset()) == [4, 6]

    def test_cdn_static_asset(self):
        assert self._ids(cdn_static_asset()) == [4]

    def test_noise_reason_order(self):
        assert noise_reason(self.store.get(1)) is None
        assert noise_reason(self.store.get(2)) == "tracking_domain"
        assert noise_reason(self.store.get(3)) == "tracking_pattern"
        assert noise_reason(self.store.get(4)) == "cdn_static"

    def test_subtract_noise(self):
        assert self._ids(~noise()) == [1, 5, 6]


class TestFailedExchange:
    def test_missing_response(self):
        store = _store(dict(host="a.com", response=None))
        assert failed_exchange()(store.get(1))

    def test_empty_server_error(self):
        store = _store(dict(host="a.com", response=_response(502, b"")))
        assert failed_exchange()(store.get(1))

    def test_server_error_with_content(self):
        store = _store(dict(host="a.com", response=_response(500, b"Traceback (most recent call last)")))
        assert not failed_exchange()(store.get(1))

    def test_success(self):
        store = _store(dict(host="a.com", status=200))
        assert not failed_exchange()(store.get(1))


class TestFilterStats:
    def test_counts_by_category(self):
        store = _store(
            dict(host="app.example.com", method="GET", path="/"),
            dict(host="app.example.com", method="POST", path="/login"),
            dict(host="sentry.io", method="POST", path="/api/1/envelope"),
            dict(host="app.example.com", method="GET", path="/track/click"),
            dict(host="app.example.com", method="GET", path="/gone", response=None),
        )
        kept, stats = filter_stats(store, methods=["get"], drop_failed=True)

        assert kept == [1]
        assert stats["original_count"] == 5
        assert stats["filtered_count"] == 1
        removed = stats["removed_by_category"]
        assert removed["method_filtered"] == 2
        assert removed["tracking_pattern"] == 1
        assert removed["failed_request"] == 1
        assert removed["tracking_domain"] == 0

    def test_keeps_everything_clean(self):
        store = _store(dict(host="a.com", method="GET", path="/"), dict(host="b.com", method="PUT", path="/x"))
        kept, stats = filter_stats(store)
        assert kept == [1, 2]
        assert sum(stats["removed_by_category"].values()) == 0

    def test_accepts_query_results(self):
        store = _store(dict(host="a.com", path="/"), dict(host="doubleclick.net", path="/ad"))
        kept, stats = filter_stats(query(store, limit=2))
        assert kept == [1]
        assert stats["removed_by_category"]["tracking_domain"] == 1
