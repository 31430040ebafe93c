"""Normalise API payloads into the merged ``AssortmentData`` view.

The canonical input is the ``data`` object returned by
``GET /webhook/assortment/<id>``: the assortment dict, optionally carrying
``userModifications`` and the ``_version``/``_cacheKey`` style annotations.
A record still wrapped in ``assortmentData`` is unwrapped once.

Every scalar is coerced so a partially populated upstream document yields
``""``/``0`` defaults instead of an exception.
"""

import copy
import logging
from datetime import datetime, timezone

from ..utils import (
    IMAGE_BUCKETS,
    UPLOAD_BUCKETS,
    count_images,
    empty_image_buckets,
    individual_order_name,
)

logger = logging.getLogger(__name__)

SOURCE_WEBHOOK = "webhook"
SOURCE_TRADITIONAL = "traditional"

DIMENSION_FIELDS = (
    "length_cm",
    "width_cm",
    "height_cm",
    "master_carton_length_cm",
    "master_carton_width_cm",
    "master_carton_height_cm",
    "inner_carton_length_cm",
    "inner_carton_width_cm",
    "inner_carton_height_cm",
)

# Surfaced in metadata when the server sent them.
_OPTIONAL_METADATA = {
    "_persistentStorageEnabled": "persistentStorageEnabled",
    "_cacheKey": "cacheKey",
    "_imageCollectionHash": "imageCollectionHash",
    "_performanceMetrics": "performanceMetrics",
}


def calculate_image_count(pcf_images):
    """Total images across the five buckets; same rule as the server."""
    return count_images(pcf_images)


def _now():
    return datetime.now(timezone.utc).isoformat()


def _str(value, default=""):
    return str(value) if value else default


def _num(value):
    if not value:
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    return int(number) if number.is_integer() else number


def _unwrap(raw):
    raw = raw or {}
    if isinstance(raw.get("assortmentData"), dict):
        return raw["assortmentData"]
    return raw


def _pcf_images(data):
    return data.get("pcfImages") or empty_image_buckets()


def _base_assortment(data, source):
    base = {
        "_id": _str(data.get("_id") or data.get("itemNo")),
        "itemNo": _str(data.get("itemNo")),
        "customerItemNo": _str(data.get("customerItemNo")),
        "name": _str(data.get("name")),
        "orderId": _num(data.get("orderId")),
        "productId": _num(data.get("productId")),
        "status": _str(data.get("status"), "pending"),
        "webhookImages": _pcf_images(data),
        "salesOrder": data.get("salesOrder"),
    }
    for name in DIMENSION_FIELDS:
        base[name] = _num(data.get(name))

    if data.get("orderName"):
        base["sourceOrderName"] = data["orderName"]
    elif source == SOURCE_WEBHOOK:
        base["sourceOrderName"] = individual_order_name(base["itemNo"])
    else:
        base["sourceOrderName"] = None
    return base


def _merged_assortment(data):
    """The flat record the packing-instruction views render from."""
    now = _now()
    record = {
        "_id": _str(data.get("_id") or data.get("itemNo")),
        "orderItemId": _num(data.get("_id")),
        "customerItemNo": data.get("customerItemNo") or None,
        "itemNo": _str(data.get("itemNo")),
        "name": _str(data.get("name")),
        "orderId": _num(data.get("orderId")),
        "productId": _num(data.get("productId")),
        "createdAt": data.get("createdAt") or now,
        "updatedAt": data.get("updatedAt") or now,
        "status": _str(data.get("status"), "pending"),
        "uploadStatus": "pending",
        "masterCUFT": data.get("masterCUFT"),
        "masterGrossWeight": data.get("masterGrossWeight"),
        "productInCarton": data.get("productInCarton"),
        "productPerUnit": data.get("productPerUnit"),
        "pcfImages": _pcf_images(data),
    }
    for name in DIMENSION_FIELDS:
        record[name] = _num(data.get(name))
    return record


def _user_modifications(data):
    """Rebuild ``userModifications`` bucket by bucket.

    Only buckets the server returned are carried; nothing removed
    server-side is reintroduced here.
    """
    raw = data.get("userModifications") or {}
    uploaded = raw.get("uploadedImages") or {}
    return {
        "uploadedImages": {
            bucket: list(uploaded.get(bucket) or []) for bucket in UPLOAD_BUCKETS
        },
        "imageLabels": dict(raw.get("imageLabels") or {}),
        "customFields": dict(raw.get("customFields") or {}),
        "formData": dict(raw.get("formData") or {}),
        "lastModified": raw.get("lastModified"),
    }


def _all_images(webhook_images, uploaded):
    """Webhook images followed by uploads, per bucket.

    Uploaded pack images form one extra pack.
    """
    merged = {}
    for bucket in IMAGE_BUCKETS:
        webhook = copy.copy(webhook_images.get(bucket) or [])
        extra = uploaded.get(bucket) or []
        if bucket == "itemPackImages":
            merged[bucket] = webhook + ([list(extra)] if extra else [])
        else:
            merged[bucket] = webhook + list(extra)
    return merged


def _metadata(data, source):
    metadata = {
        "source": source,
        "lastModified": data.get("updatedAt") or _now(),
        "version": data.get("version") or data.get("_version") or 1,
        "syncedAt": data.get("syncedAt") or _now(),
        "isWebhookData": source == SOURCE_WEBHOOK,
        "dataSource": "api",
    }
    for key, name in _OPTIONAL_METADATA.items():
        if data.get(key):
            metadata[name] = data[key]
    return metadata


def _build(data, source, user_modifications):
    webhook_images = _pcf_images(data)
    all_images = _all_images(webhook_images, user_modifications["uploadedImages"])
    return {
        "baseAssortment": _base_assortment(data, source),
        "userModifications": user_modifications,
        "mergedData": {
            "assortment": _merged_assortment(data),
            "allImages": all_images,
            "webhookImages": webhook_images,
            "imageLabels": user_modifications["imageLabels"],
            "combinedImageCount": calculate_image_count(webhook_images),
        },
        "metadata": _metadata(data, source),
    }


def transform_raw_to_assortment_data(raw, source=SOURCE_WEBHOOK):
    """Build ``AssortmentData`` from an assortment without user modifications."""
    data = _unwrap(raw)
    return _build(data, source, _user_modifications({}))


def transform_individual_assortment_response(raw):
    """Build ``AssortmentData`` for a standalone assortment, keeping its
    ``userModifications``."""
    data = _unwrap(raw)
    user_modifications = _user_modifications(data)
    result = _build(data, SOURCE_WEBHOOK, user_modifications)
    logger.debug(
        "Transformed %s with %d uploaded images",
        result["baseAssortment"]["itemNo"],
        sum(len(v) for v in user_modifications["uploadedImages"].values()),
    )
    return result


def transform_webhook_to_sales_order(raw):
    """Turn a stored order document into ``{salesOrder, assortments, metadata}``."""
    raw = raw or {}
    sales_order = raw.get("salesOrder") or {}
    total_images = (raw.get("metadata") or {}).get("totalImages") or 0
    assortments = raw.get("assortments") or []
    return {
        "salesOrder": {
            "id": sales_order.get("id"),
            "orderNumber": sales_order.get("id"),
            "customer": sales_order.get("customer"),
            "customerPO": sales_order.get("customer_po"),
            "status": raw.get("status") or "active",
            "totalAssortments": len(assortments),
            "totalImages": total_images,
            "createdAt": raw.get("receivedAt"),
            "updatedAt": raw.get("processedAt") or raw.get("receivedAt"),
        },
        "assortments": [
            transform_raw_to_assortment_data(a, SOURCE_WEBHOOK) for a in assortments
        ],
        "metadata": {
            "source": SOURCE_WEBHOOK,
            "totalImages": total_images,
            "lastUpdated": _now(),
        },
    }


def validate_assortment_data(data):
    base = (data or {}).get("baseAssortment") or {}
    return bool(
        base.get("_id")
        and base.get("itemNo")
        and (data.get("mergedData") or {}).get("assortment")
        and data.get("metadata")
    )


def is_webhook_data(data):
    metadata = (data or {}).get("metadata") or {}
    return metadata.get("source") == SOURCE_WEBHOOK or metadata.get("isWebhookData") is True
