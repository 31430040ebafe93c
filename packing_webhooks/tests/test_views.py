"""Tests for the packing-instruction webhook endpoints."""

import json
from unittest.mock import patch

import pytest
from django.core.files.uploadedfile import SimpleUploadedFile
from django.db import DatabaseError

from packing_webhooks.models import IndividualAssortment, WebhookOrder
from packing_webhooks.services import store
from packing_webhooks.tests.conftest import make_assortment, make_order_payload

pytestmark = pytest.mark.django_db

BASE_URL = "/webhook/"


def _post(client, path, payload):
    return client.post(
        BASE_URL + path,
        data=json.dumps(payload),
        content_type="application/json",
    )


# ---------------------------------------------------------------------------
# Sales-order intake
# ---------------------------------------------------------------------------


class TestSalesOrderWebhook:
    def test_saves_and_marks_processed(self, api_client):
        response = _post(api_client, "packing-instruction/SOP1", make_order_payload())

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["orderName"] == "SOP1"
        assert body["totalImages"] == 3
        assert body["frontendUrl"] == "http://frontend.test/packing-instruction/SOP1"

        order = WebhookOrder.objects.get(order_name="SOP1")
        assert body["dataId"] == order.pk
        assert order.status == WebhookOrder.Status.PROCESSED

    def test_single_assortment_with_item_prefix_redirected(self, api_client):
        response = _post(api_client, "packing-instruction/A01", make_order_payload())

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["redirectTo"] == "/webhook/individual-assortment/A01"
        assert not WebhookOrder.objects.exists()

    def test_item_prefix_with_several_assortments_accepted(self, api_client):
        payload = make_order_payload(make_assortment("A01", 1), make_assortment("A02", 2))
        response = _post(api_client, "packing-instruction/A-BATCH", payload)
        assert response.status_code == 200

    def test_store_failure_returns_500(self, api_client):
        with patch.object(
            WebhookOrder.objects, "update_or_create", side_effect=DatabaseError("boom")
        ):
            response = _post(api_client, "packing-instruction/SOP1", make_order_payload())

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["message"] == "boom"
        assert body["error"] == "Sales order webhook processing failed"


class TestIndividualAssortmentWebhook:
    def test_saves(self, api_client, assortment):
        response = _post(api_client, "individual-assortment/A01", {"assortment": assortment})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["version"] == 1
        assert body["cacheKey"].startswith("assortment_A01_v1_")
        assert body["totalImages"] == 3
        assert body["persistentStorageEnabled"] is True

    def test_missing_assortment(self, api_client):
        response = _post(api_client, "individual-assortment/A01", {})
        assert response.status_code == 400
        assert response.json()["success"] is False
        assert not IndividualAssortment.objects.exists()

    def test_redelivery_bumps_access_count(self, api_client, assortment):
        _post(api_client, "individual-assortment/A01", {"assortment": assortment})
        _post(api_client, "individual-assortment/A01", {"assortment": assortment})
        assert IndividualAssortment.objects.get().access_count == 1


class TestSaveAssortment:
    def test_on_demand_save(self, api_client, assortment):
        response = _post(
            api_client,
            "assortment/save",
            {"assortment": assortment, "sourceOrderName": "SOP1"},
        )
        assert response.status_code == 200
        assert IndividualAssortment.objects.get().source_order_name == "SOP1"

    def test_requires_item_number(self, api_client):
        response = _post(api_client, "assortment/save", {"assortment": {"name": "x"}})
        assert response.status_code == 400


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestWebhookData:
    def test_returns_document(self, api_client):
        store.save_order_webhook("SOP1", make_order_payload())
        response = api_client.get(BASE_URL + "data/SOP1")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["orderName"] == "SOP1"
        assert data["salesOrder"]["customer"] == "ACME"
        assert data["assortments"][0]["itemNo"] == "A01"

    def test_not_found(self, api_client):
        response = api_client.get(BASE_URL + "data/NOPE")
        assert response.status_code == 404
        assert response.json()["success"] is False


class TestAssortmentLookup:
    def test_order_then_individual(self, api_client, assortment):
        _post(api_client, "packing-instruction/SOP1", make_order_payload(assortment))

        response = api_client.get(BASE_URL + "assortment/A01")
        assert response.status_code == 200
        body = response.json()
        assert body["source"] == "sales_order"
        assert body["data"]["itemNo"] == "A01"
        assert body["data"]["orderName"] == "SOP1"

        _post(api_client, "individual-assortment/A01", {"assortment": assortment})

        body = api_client.get(BASE_URL + "assortment/A01").json()
        assert body["source"] == "individual"
        assert body["data"]["itemNo"] == "A01"
        assert body["data"]["_accessCount"] == 1

    def test_numeric_id_searches_orders(self, api_client):
        store.save_order_webhook("SOP1", make_order_payload())
        body = api_client.get(BASE_URL + "assortment/42").json()
        assert body["source"] == "sales_order"

    def test_invalid_id(self, api_client):
        response = api_client.get(BASE_URL + "assortment/%23bad")
        assert response.status_code == 400
        assert "Invalid assortment ID format" in response.json()["message"]

    def test_not_found(self, api_client):
        response = api_client.get(BASE_URL + "assortment/A404")
        assert response.status_code == 404
        assert response.json()["message"] == "No assortment data found for ID: A404"

    def test_cache_validation(self, api_client, assortment):
        record = store.save_individual_assortment(assortment)
        expected = record.metadata["imageCollectionHash"]

        body = api_client.get(
            BASE_URL + "assortment/A01",
            {"validateCache": "true", "expectedHash": expected},
        ).json()
        assert body["cacheValid"] is True
        assert body["version"] == 1

        body = api_client.get(
            BASE_URL + "assortment/A01",
            {"validateCache": "true", "expectedHash": "stale"},
        ).json()
        assert body["cacheValid"] is False
        assert "warning" in body

    def test_patch_user_modifications(self, api_client, assortment):
        store.save_individual_assortment(assortment)
        response = api_client.patch(
            BASE_URL + "assortment/A01",
            {"userModifications": {"formData": {"unit": "pcs"}}},
            format="json",
        )
        assert response.status_code == 200
        assert response.json()["version"] == 2
        assert IndividualAssortment.objects.get().user_modifications["formData"] == {"unit": "pcs"}

    def test_patch_missing(self, api_client):
        response = api_client.patch(
            BASE_URL + "assortment/A404", {"formData": {}}, format="json"
        )
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Uploaded images
# ---------------------------------------------------------------------------


class TestImageEndpoints:
    def _upload(self, api_client, *files, mapping=None, labels=None):
        return api_client.patch(
            BASE_URL + "assortment/A01/images",
            {
                "files": list(files),
                "fileMapping": json.dumps(mapping or {}),
                "imageLabels": json.dumps(labels or {}),
            },
            format="multipart",
        )

    def test_upload_serve_and_delete(self, api_client, assortment):
        store.save_individual_assortment(assortment)
        response = self._upload(
            api_client,
            SimpleUploadedFile("a.png", b"pixels-a", content_type="image/png"),
            SimpleUploadedFile("b.png", b"pixels-b", content_type="image/png"),
            mapping={"1": "itemBarcodeImages"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["uploadedImageCount"] == 2
        uploaded = body["data"]["userModifications"]["uploadedImages"]
        filename = uploaded["itemBarcodeImages"][0]["filename"]

        served = api_client.get(BASE_URL + f"pcf-images/{filename}")
        assert served.status_code == 200
        assert served.content == b"pixels-b"
        assert served["Content-Type"] == "image/png"

        deleted = api_client.delete(BASE_URL + f"assortment/A01/images/{filename}")
        assert deleted.status_code == 200
        assert deleted.json()["deletedCount"] == 1
        assert api_client.get(BASE_URL + f"pcf-images/{filename}").status_code == 404

    def test_batch_delete(self, api_client, assortment):
        store.save_individual_assortment(assortment)
        body = self._upload(
            api_client,
            SimpleUploadedFile("a.png", b"a", content_type="image/png"),
            SimpleUploadedFile("b.png", b"b", content_type="image/png"),
        ).json()
        names = [r["filename"] for r in body["data"]["userModifications"]["uploadedImages"]["displayImages"]]

        response = api_client.delete(
            BASE_URL + "assortment/A01/images/batch",
            {"imageIds": names},
            format="json",
        )
        assert response.status_code == 200
        assert response.json()["deletedCount"] == 2

    def test_batch_delete_requires_list(self, api_client, assortment):
        store.save_individual_assortment(assortment)
        response = api_client.delete(
            BASE_URL + "assortment/A01/images/batch", {"imageIds": "a.png"}, format="json"
        )
        assert response.status_code == 400

    def test_upload_to_unknown_assortment(self, api_client):
        response = self._upload(
            api_client, SimpleUploadedFile("a.png", b"a", content_type="image/png")
        )
        assert response.status_code == 404

    def test_single_delete_not_found(self, api_client, assortment):
        store.save_individual_assortment(assortment)
        response = api_client.delete(BASE_URL + "assortment/A01/images/ghost.png")
        assert response.status_code == 404
        assert response.json()["message"] == "Image ghost.png not found"


# ---------------------------------------------------------------------------
# Statistics and maintenance
# ---------------------------------------------------------------------------


class TestStatsAndMaintenance:
    def test_stats(self, api_client):
        store.save_order_webhook("SOP1", make_order_payload())
        body = api_client.get(BASE_URL + "stats").json()
        assert body["success"] is True
        assert body["stats"]["total"] == 1
        assert body["stats"]["successRate"] == "100.00%"

    def test_recent(self, api_client):
        store.save_order_webhook("SOP1", make_order_payload())
        store.save_order_webhook("SOP2", make_order_payload())

        body = api_client.get(BASE_URL + "recent").json()
        assert body["count"] == 2
        assert body["webhooks"][0]["customer"] == "ACME"
        assert body["webhooks"][0]["totalImages"] == 3

        assert api_client.get(BASE_URL + "recent/1").json()["count"] == 1

    def test_cache_stats(self, api_client, assortment):
        store.save_individual_assortment(assortment)
        body = api_client.get(BASE_URL + "cache/stats").json()
        assert body["cacheStatistics"]["totalAssortments"] == 1

    def test_cache_invalidate(self, api_client, assortment):
        store.save_individual_assortment(assortment)
        assert api_client.delete(BASE_URL + "cache/A01").status_code == 200
        assert api_client.delete(BASE_URL + "cache/A404").status_code == 404

    def test_cache_cleanup(self, api_client):
        body = api_client.delete(BASE_URL + "cache?olderThanDays=7").json()
        assert body["success"] is True
        assert body["olderThanDays"] == 7
        assert body["deletedCount"] == 0

    def test_cache_cleanup_bad_days(self, api_client):
        assert api_client.delete(BASE_URL + "cache?olderThanDays=soon").status_code == 400

    def test_health(self, api_client):
        body = api_client.get(BASE_URL + "health").json()
        assert body["status"] == "healthy"
