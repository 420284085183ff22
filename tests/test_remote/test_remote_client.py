"""Tests for the remote table client against a mocked transport."""

import json

import httpx
import pytest

from field_report.remote.client import (
    RemoteConnectivityError,
    RemoteRejectedError,
    RemoteStoreClient,
)


class Recorder:
    """Collects requests and answers with a canned response."""

    def __init__(self, status=200, body=None, raise_exc=None):
        self.requests: list[httpx.Request] = []
        self.status = status
        self.body = [] if body is None else body
        self.raise_exc = raise_exc

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_exc is not None:
            raise self.raise_exc("boom", request=request)
        if self.body == b"":
            return httpx.Response(self.status, content=b"")
        return httpx.Response(self.status, json=self.body)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


def _client(recorder) -> RemoteStoreClient:
    return RemoteStoreClient(
        base_url="https://db.example.com/",
        api_key="anon-key",
        timeout=5,
        transport=httpx.MockTransport(recorder),
    )


class TestRequestShape:
    def test_auth_headers(self):
        rec = Recorder()
        _client(rec).select("projects")
        assert rec.last.headers["apikey"] == "anon-key"
        assert rec.last.headers["authorization"] == "Bearer anon-key"

    def test_table_path(self):
        rec = Recorder()
        _client(rec).select("reports")
        assert rec.last.url.path == "/rest/v1/reports"

    def test_select_filters_and_options(self):
        rec = Recorder()
        _client(rec).select(
            "report_entries",
            {"report_id": "r1", "is_deleted": False, "local_id": None},
            order="entry_order", limit=5,
        )
        params = rec.last.url.params
        assert params["report_id"] == "eq.r1"
        assert params["is_deleted"] == "eq.false"
        assert params["local_id"] == "is.null"
        assert params["order"] == "entry_order"
        assert params["limit"] == "5"
        assert params["select"] == "*"

    def test_upsert_merge(self):
        rec = Recorder(body=[{"id": "x"}])
        rows = _client(rec).upsert("reports", {"a": 1},
                                   on_conflict="project_id,report_date,user_id")
        assert rows == [{"id": "x"}]
        assert rec.last.method == "POST"
        assert rec.last.url.params["on_conflict"] == \
            "project_id,report_date,user_id"
        assert "resolution=merge-duplicates" in rec.last.headers["prefer"]
        assert json.loads(rec.last.content) == {"a": 1}

    def test_upsert_ignore_duplicates(self):
        rec = Recorder()
        _client(rec).upsert("active_reports", {"a": 1},
                            on_conflict="project_id,report_date",
                            ignore_duplicates=True)
        assert "resolution=ignore-duplicates" in rec.last.headers["prefer"]

    def test_update_is_patch_with_filters(self):
        rec = Recorder()
        _client(rec).update("active_reports", {"last_heartbeat": "t"},
                            {"device_id": "d1"})
        assert rec.last.method == "PATCH"
        assert rec.last.url.params["device_id"] == "eq.d1"

    def test_delete_requires_filters(self):
        with pytest.raises(ValueError):
            _client(Recorder()).delete("reports", {})

    def test_delete_sends_filters(self):
        rec = Recorder()
        _client(rec).delete("report_raw_capture", {"report_id": "r1"})
        assert rec.last.method == "DELETE"
        assert rec.last.url.params["report_id"] == "eq.r1"


class TestResponses:
    def test_select_one(self):
        rec = Recorder(body=[{"id": "a"}, {"id": "b"}])
        assert _client(rec).select_one("reports", {"id": "a"}) == {"id": "a"}
        assert rec.last.url.params["limit"] == "1"

    def test_select_one_none(self):
        assert _client(Recorder()).select_one("reports", {"id": "a"}) is None

    def test_empty_body_is_empty_list(self):
        rec = Recorder(status=204, body=b"")
        assert _client(rec).delete("reports", {"id": "a"}) == []

    def test_error_status_is_rejected(self):
        rec = Recorder(status=409, body={"message": "duplicate key"})
        with pytest.raises(RemoteRejectedError) as exc:
            _client(rec).insert("reports", {"a": 1})
        assert exc.value.status_code == 409
        assert "duplicate key" in str(exc.value)

    def test_transport_failure_is_connectivity(self):
        rec = Recorder(raise_exc=httpx.ConnectError)
        with pytest.raises(RemoteConnectivityError):
            _client(rec).select("reports")

    def test_timeout_is_connectivity(self):
        rec = Recorder(raise_exc=httpx.ReadTimeout)
        with pytest.raises(RemoteConnectivityError):
            _client(rec).select("reports")


class TestDeleteNowait:
    def test_returns_thread_and_sends(self):
        rec = Recorder()
        thread = _client(rec).delete_nowait("active_reports",
                                            {"device_id": "d1"})
        thread.join(timeout=5)
        assert rec.last.method == "DELETE"

    def test_failure_is_swallowed(self):
        rec = Recorder(raise_exc=httpx.ConnectError)
        thread = _client(rec).delete_nowait("active_reports",
                                            {"device_id": "d1"})
        thread.join(timeout=5)
        assert not thread.is_alive()
