"""Tests for PackingInstructionClient."""

import json
from unittest.mock import MagicMock

import pytest
import requests

from packing_webhooks.client.api import (
    AssortmentNotFoundError,
    PackingInstructionAPIError,
    PackingInstructionClient,
    retry_delay,
)

BASE = "http://api.test"


def _response(status_code=200, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.json.return_value = payload if payload is not None else {"success": True}
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def sleep():
    return MagicMock()


@pytest.fixture
def client(session, sleep):
    return PackingInstructionClient(BASE + "/", session=session, sleep=sleep)


class TestRetryDelay:
    def test_exponential_with_cap(self):
        assert [retry_delay(n) for n in range(6)] == [1, 2, 4, 8, 16, 30]


class TestReads:
    def test_get_assortment(self, client, session):
        session.request.return_value = _response(payload={"success": True, "data": {"itemNo": "A01"}})

        assert client.get_assortment("A01")["data"] == {"itemNo": "A01"}
        session.request.assert_called_once_with(
            "GET", f"{BASE}/webhook/assortment/A01", timeout=30, params=None
        )

    def test_expected_hash_requests_validation(self, client, session):
        session.request.return_value = _response()
        client.get_assortment("A01", expected_hash="abc")
        assert session.request.call_args.kwargs["params"] == {
            "validateCache": "true",
            "expectedHash": "abc",
        }

    def test_retries_then_raises(self, client, session, sleep):
        session.request.return_value = _response(500, {"success": False, "message": "down"})

        with pytest.raises(PackingInstructionAPIError) as excinfo:
            client.get_stats()

        assert excinfo.value.status_code == 500
        assert str(excinfo.value) == "down"
        assert session.request.call_count == 4
        assert [c.args[0] for c in sleep.call_args_list] == [1, 2, 4]

    def test_recovers_after_transport_error(self, client, session, sleep):
        session.request.side_effect = [requests.ConnectionError("refused"), _response()]

        assert client.health() == {"success": True}
        sleep.assert_called_once_with(1)

    def test_no_retry_on_404(self, client, session, sleep):
        session.request.return_value = _response(
            404, {"success": False, "message": "No assortment data found for ID: A404"}
        )

        with pytest.raises(AssortmentNotFoundError) as excinfo:
            client.get_assortment("A404")

        assert excinfo.value.status_code == 404
        assert session.request.call_count == 1
        sleep.assert_not_called()

    def test_non_json_body(self, client, session):
        response = _response(502)
        response.json.side_effect = ValueError("no json")
        response.text = "Bad Gateway"
        session.request.return_value = response
        client.max_retries = 0

        with pytest.raises(PackingInstructionAPIError, match="Bad Gateway"):
            client.get_order("SOP1")

    def test_recent_paths(self, client, session):
        session.request.return_value = _response()
        client.get_recent()
        client.get_recent(5)
        urls = [c.args[1] for c in session.request.call_args_list]
        assert urls == [f"{BASE}/webhook/recent", f"{BASE}/webhook/recent/5"]


class TestMutations:
    def test_not_retried(self, client, session, sleep):
        session.request.return_value = _response(500, {"message": "boom"})

        with pytest.raises(PackingInstructionAPIError):
            client.save_assortment({"itemNo": "A01"})

        assert session.request.call_count == 1
        sleep.assert_not_called()

    def test_save_assortment(self, client, session):
        session.request.return_value = _response()
        client.save_assortment({"itemNo": "A01"}, source_order_name="SOP1")
        session.request.assert_called_once_with(
            "POST",
            f"{BASE}/webhook/assortment/save",
            timeout=30,
            json={"assortment": {"itemNo": "A01"}, "sourceOrderName": "SOP1"},
        )

    def test_upload_images(self, client, session):
        session.request.return_value = _response()
        upload = ("a.png", b"pixels", "image/png")

        client.upload_images(
            "A01",
            [upload],
            file_mapping={"0": "itemBarcodeImages"},
            image_labels={"a.png": "front"},
        )

        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert (method, url) == ("PATCH", f"{BASE}/webhook/assortment/A01/images")
        assert kwargs["files"] == [("files", upload)]
        assert json.loads(kwargs["data"]["fileMapping"]) == {"0": "itemBarcodeImages"}
        assert json.loads(kwargs["data"]["imageLabels"]) == {"a.png": "front"}

    def test_delete_images(self, client, session):
        session.request.return_value = _response()
        client.delete_images("A01", ("a.png", "b.png"))
        assert session.request.call_args.args[1] == f"{BASE}/webhook/assortment/A01/images/batch"
        assert session.request.call_args.kwargs["json"] == {"imageIds": ["a.png", "b.png"]}

    def test_update_and_invalidate(self, client, session):
        session.request.return_value = _response()
        client.update_assortment("A01", {"formData": {"unit": "pcs"}})
        client.invalidate_cache("A01")

        first, second = session.request.call_args_list
        assert first.args == ("PATCH", f"{BASE}/webhook/assortment/A01")
        assert first.kwargs["json"] == {"userModifications": {"formData": {"unit": "pcs"}}}
        assert second.args == ("DELETE", f"{BASE}/webhook/cache/A01")
