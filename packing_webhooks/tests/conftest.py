import base64
from unittest.mock import patch

import pytest
from rest_framework.test import APIClient


def b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


PNG_A = "data:image/png;base64," + b64(b"\x89PNG first image bytes")
PNG_B = "data:image/png;base64," + b64(b"\x89PNG second image bytes")
JPEG_C = b64(b"\xff\xd8\xff plain jpeg bytes")


def make_image(component, image=PNG_A, image_id=1):
    return {
        "id": image_id,
        "componentName": component,
        "image": image,
        "filename": f"{component}.png",
    }


def make_assortment(item_no="A01", assortment_id=42, **overrides):
    assortment = {
        "_id": assortment_id,
        "itemNo": item_no,
        "customerItemNo": "CUST-1",
        "name": "Garden gnome",
        "orderId": 7,
        "productId": 9,
        "length_cm": 10,
        "width_cm": 5,
        "height_cm": 20,
        "pcfImages": {
            "itemPackImages": [[make_image("front"), make_image("back", PNG_B, 2)]],
            "itemBarcodeImages": [make_image("barcode", JPEG_C, 3)],
            "displayImages": [],
            "innerCartonImages": [],
            "masterCartonImages": [],
        },
    }
    assortment.update(overrides)
    return assortment


def make_order_payload(*assortments):
    return {
        "salesOrder": {"id": 1001, "customer": "ACME", "customer_po": "PO-1"},
        "assortments": list(assortments) or [make_assortment()],
    }


@pytest.fixture(autouse=True)
def statsd():
    with patch("packing_webhooks.services.store.statsd") as mock_statsd:
        yield mock_statsd


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def assortment():
    return make_assortment()
