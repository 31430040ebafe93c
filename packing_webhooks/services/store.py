"""Webhook store: persistence of sales-order deliveries and standalone assortments.

Every write here is a single-document insert-or-update keyed on a column
with a unique constraint, so concurrent deliveries for the same key resolve
to last-write-wins instead of duplicate rows.

A webhook write overwrites the webhook-sourced fields of an assortment and
never touches its ``userModifications``.
"""

import copy
import logging
import time
from datetime import timedelta

from datadog import statsd
from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from ..models import IndividualAssortment, WebhookOrder
from ..utils import (
    INDIVIDUAL_ORDER_PREFIX,
    count_assortment_images,
    empty_image_buckets,
    is_item_number,
)
from ..versioning import (
    generate_cache_key,
    hash_collection,
    process_images_with_hashing,
    trim_version_history,
    update_performance_metrics,
    version_history_entry,
)

logger = logging.getLogger(__name__)

ODOO_VERSION = "17"
ORDER_SOURCE = "odoo"


class AssortmentNotFound(Exception):
    """No stored assortment matches the requested id."""


class InvalidAssortmentId(ValueError):
    """The id is neither an item number nor a numeric assortment id."""


def _elapsed_ms(start):
    return int((time.monotonic() - start) * 1000)


def _setting(name, default):
    return getattr(settings, name, default)


def _assortment_keys(assortments):
    keys = []
    for assortment in assortments or []:
        if not isinstance(assortment, dict):
            continue
        if assortment.get("itemNo"):
            keys.append(f"itemNo:{assortment['itemNo']}")
        if assortment.get("_id") is not None:
            keys.append(f"id:{assortment['_id']}")
    return "|" + "|".join(keys) + "|" if keys else ""


def _empty_user_modifications():
    return {
        "uploadedImages": empty_image_buckets(),
        "imageLabels": {},
        "customFields": {},
        "formData": {},
        "lastModified": None,
    }


# ---------------------------------------------------------------------------
# Sales-order webhooks
# ---------------------------------------------------------------------------


def save_order_webhook(order_name, payload):
    """Insert or overwrite the stored delivery for *order_name*.

    On any persistence failure a ``status=error`` record carrying the
    failure message is written on a best-effort basis, then the original
    exception is re-raised.

    Returns:
        WebhookOrder
    """
    start = time.monotonic()
    tags = ["kind:order"]
    statsd.increment("packing.webhook.received", tags=tags)

    assortments = payload.get("assortments") or []
    try:
        metadata = {
            "totalImages": count_assortment_images(assortments),
            "assortmentCount": len(assortments),
            "source": ORDER_SOURCE,
            "odooVersion": ODOO_VERSION,
        }
        order, created = WebhookOrder.objects.update_or_create(
            order_name=order_name,
            defaults={
                "sales_order": payload.get("salesOrder") or {},
                "assortments": assortments,
                "assortment_keys": _assortment_keys(assortments),
                "status": WebhookOrder.Status.RECEIVED,
                "received_at": timezone.now(),
                "processed_at": None,
                "error_message": "",
                "metadata": metadata,
            },
        )
    except Exception as exc:
        logger.exception("Failed to save webhook data for %s", order_name)
        statsd.increment("packing.webhook.failed", tags=tags)
        _record_order_error(order_name, exc)
        raise

    statsd.histogram("packing.webhook.processing_time_ms", _elapsed_ms(start), tags=tags)
    logger.info(
        "%s webhook data for order %s (%d assortments, %d images)",
        "Created" if created else "Updated",
        order_name,
        metadata["assortmentCount"],
        metadata["totalImages"],
    )
    return order


def _record_order_error(order_name, exc):
    try:
        WebhookOrder.objects.update_or_create(
            order_name=order_name,
            defaults={
                "status": WebhookOrder.Status.ERROR,
                "error_message": str(exc)[:2000] or exc.__class__.__name__,
                "received_at": timezone.now(),
            },
        )
    except Exception:
        logger.exception("Failed to save error state for %s", order_name)


def mark_processed(order_name):
    """Flag a delivery as processed. Failures are logged, not raised."""
    try:
        WebhookOrder.objects.filter(order_name=order_name).update(
            status=WebhookOrder.Status.PROCESSED,
            processed_at=timezone.now(),
        )
    except Exception:
        logger.exception("Failed to mark %s as processed", order_name)
        return
    statsd.increment("packing.webhook.processed", tags=["kind:order"])
    logger.info("Marked webhook data as processed for order: %s", order_name)


def get_order_webhook(order_name):
    return WebhookOrder.objects.filter(order_name=order_name).first()


def list_recent(limit=50):
    """Most recent deliveries, excluding synthetic ``INDIVIDUAL_`` orders."""
    return list(
        WebhookOrder.objects.exclude(order_name__startswith=INDIVIDUAL_ORDER_PREFIX)
        .order_by("-received_at")[:limit]
    )


def find_assortment_in_order(assortment_id):
    """Find an assortment embedded in a stored sales order.

    Item numbers (``A000404``) match on ``itemNo``; numeric ids match on
    ``_id``.

    Returns:
        dict: the assortment merged with ``salesOrder`` and ``orderName``,
        or ``None`` when no order holds it.

    Raises:
        InvalidAssortmentId: *assortment_id* is neither form.
    """
    if is_item_number(assortment_id):
        field, needle = "itemNo", assortment_id

        def matches(a):
            return a.get("itemNo") == assortment_id
    else:
        try:
            numeric_id = int(assortment_id)
        except (TypeError, ValueError):
            raise InvalidAssortmentId(f"Invalid assortment ID format: {assortment_id}")
        field, needle = "id", numeric_id

        def matches(a):
            return a.get("_id") == numeric_id

    # LIKE is case-insensitive on some backends; confirm each candidate.
    candidates = WebhookOrder.objects.filter(
        assortment_keys__contains=f"|{field}:{needle}|"
    ).order_by("-received_at")
    for order in candidates.iterator():
        assortment = next(
            (a for a in order.assortments or [] if isinstance(a, dict) and matches(a)), None
        )
        if assortment is not None:
            return {
                **assortment,
                "salesOrder": order.sales_order,
                "orderName": order.order_name,
            }

    logger.info("No sales order holds assortment %s", assortment_id)
    return None


def delete_old_webhooks(older_than_days=None):
    """Delete deliveries received more than *older_than_days* ago."""
    if older_than_days is None:
        older_than_days = _setting("PACKING_RETENTION_DAYS", 30)
    cutoff = timezone.now() - timedelta(days=older_than_days)
    deleted, _ = WebhookOrder.objects.filter(received_at__lt=cutoff).delete()
    logger.info("Deleted %d old webhook records", deleted)
    return deleted


# ---------------------------------------------------------------------------
# Individual assortments
# ---------------------------------------------------------------------------


def save_individual_assortment(assortment, source_order_name=None):
    """Insert or refresh the standalone copy of *assortment*.

    Re-deliveries bump ``access_count``; the version, version history and
    cache key only move when the image collection hash changed.  Existing
    ``userModifications`` are carried over untouched.

    Returns:
        IndividualAssortment
    """
    start = time.monotonic()
    tags = ["kind:individual"]
    statsd.increment("packing.webhook.received", tags=tags)

    item_no = assortment.get("itemNo")
    if not item_no:
        raise ValueError("Assortment payload has no itemNo")

    try:
        with transaction.atomic():
            existing = (
                IndividualAssortment.objects.select_for_update()
                .filter(assortment_id=item_no)
                .first()
            )
            if existing is None:
                try:
                    with transaction.atomic():
                        record = _create_individual(assortment, source_order_name, start)
                except IntegrityError:
                    # Lost the insert race; update the row the winner wrote.
                    existing = IndividualAssortment.objects.select_for_update().get(
                        assortment_id=item_no
                    )
                    record = _refresh_individual(existing, assortment, source_order_name, start)
            else:
                record = _refresh_individual(existing, assortment, source_order_name, start)
    except Exception:
        logger.exception("Failed to save individual assortment %s", item_no)
        statsd.increment("packing.webhook.failed", tags=tags)
        raise

    statsd.histogram("packing.webhook.processing_time_ms", _elapsed_ms(start), tags=tags)
    return record


def _individual_metadata(assortment, collection, source_order_name):
    now = timezone.now().isoformat()
    return {
        "totalImages": collection.total_images,
        "source": "sales_order_extraction" if source_order_name else "individual_webhook",
        "odooVersion": ODOO_VERSION,
        "originalId": assortment.get("_id"),
        "imageCollectionHash": collection.collection_hash,
        "lastImageUpdate": now,
        "persistentStorageEnabled": True,
        "cachingStrategy": "aggressive",
    }


def _create_individual(assortment, source_order_name, start):
    item_no = assortment["itemNo"]
    pcf_images = process_images_with_hashing(assortment.get("pcfImages"))
    collection = hash_collection(pcf_images)
    now = timezone.now()

    record = IndividualAssortment.objects.create(
        assortment_id=item_no,
        assortment_data={
            **assortment,
            "pcfImages": pcf_images,
            "userModifications": _empty_user_modifications(),
        },
        source_order_name=source_order_name or "",
        status=IndividualAssortment.Status.RECEIVED,
        received_at=now,
        access_count=0,
        current_version=1,
        version_history=[
            version_history_entry(1, collection.collection_hash, None, collection.total_images)
        ],
        cache_key=generate_cache_key(item_no, 1),
        last_cache_update=now,
        metadata=_individual_metadata(assortment, collection, source_order_name),
        performance_metrics=update_performance_metrics(None, _elapsed_ms(start), cache_hit=False),
    )
    logger.info(
        "Created individual assortment %s (v1) with %d images",
        item_no,
        collection.total_images,
    )
    return record


def _refresh_individual(record, assortment, source_order_name, start):
    item_no = record.assortment_id
    stored = record.assortment_data or {}
    pcf_images = process_images_with_hashing(assortment.get("pcfImages"))
    collection = hash_collection(pcf_images, previous=stored.get("pcfImages"))
    images_changed = collection.collection_hash != (record.metadata or {}).get(
        "imageCollectionHash"
    )
    now = timezone.now()

    if images_changed:
        record.current_version += 1
        record.version_history = trim_version_history(
            list(record.version_history or [])
            + [
                version_history_entry(
                    record.current_version,
                    collection.collection_hash,
                    collection.changed_images,
                    collection.total_images,
                )
            ],
            keep=_setting("PACKING_VERSION_HISTORY_LIMIT", 10),
        )
        record.cache_key = generate_cache_key(item_no, record.current_version)
        metadata = _individual_metadata(assortment, collection, source_order_name)
    else:
        # Keep lastImageUpdate from the version that introduced these images.
        metadata = {
            **_individual_metadata(assortment, collection, source_order_name),
            "lastImageUpdate": (record.metadata or {}).get("lastImageUpdate"),
        }
        pcf_images = stored.get("pcfImages") or pcf_images

    metadata["hasUserModifications"] = bool((record.metadata or {}).get("hasUserModifications"))

    record.assortment_data = {
        **assortment,
        "pcfImages": pcf_images,
        "userModifications": stored.get("userModifications") or _empty_user_modifications(),
    }
    record.metadata = metadata
    if source_order_name:
        record.source_order_name = source_order_name
    record.status = IndividualAssortment.Status.RECEIVED
    record.received_at = now
    record.access_count += 1
    record.last_accessed_at = now
    record.last_cache_update = now
    record.performance_metrics = update_performance_metrics(
        record.performance_metrics, _elapsed_ms(start), cache_hit=not images_changed
    )
    record.save()

    if images_changed:
        logger.info(
            "Updated individual assortment %s (v%d) with %d images",
            item_no,
            record.current_version,
            collection.total_images,
        )
        if collection.changed_images:
            logger.info("Changed images: %s", ", ".join(collection.changed_images))
    else:
        logger.info("No image changes detected for %s, refreshed access metrics only", item_no)
    return record


def get_individual_assortment(assortment_id):
    """Read a standalone assortment, recording the access.

    Returns:
        dict: a copy of the stored assortment annotated with ``_accessCount``,
        ``_lastAccessed``, ``_version`` and cache metadata, or ``None``.
    """
    start = time.monotonic()
    record = IndividualAssortment.objects.filter(assortment_id=assortment_id).first()
    if record is None:
        logger.info("No individual assortment found for %s", assortment_id)
        return None

    now = timezone.now()
    metrics = update_performance_metrics(
        record.performance_metrics, _elapsed_ms(start), cache_hit=True
    )
    IndividualAssortment.objects.filter(pk=record.pk).update(
        access_count=F("access_count") + 1,
        last_accessed_at=now,
        performance_metrics=metrics,
    )
    logger.info(
        "Found individual assortment %s (v%d)", assortment_id, record.current_version
    )

    data = copy.deepcopy(record.assortment_data)
    data.update(
        {
            "_individualAssortmentId": record.pk,
            "_accessCount": record.access_count + 1,
            "_lastAccessed": now.isoformat(),
            "_version": record.current_version,
            "_cacheKey": record.cache_key,
            "_imageCollectionHash": (record.metadata or {}).get("imageCollectionHash"),
            "_persistentStorageEnabled": True,
            "_performanceMetrics": metrics,
        }
    )
    return data


def get_individual_assortment_with_cache_validation(assortment_id, expected_hash=None):
    """Return ``(data, cache_valid, version)`` for a client-held collection hash."""
    record = IndividualAssortment.objects.filter(assortment_id=assortment_id).first()
    if record is None:
        return None, False, 0

    current_hash = (record.metadata or {}).get("imageCollectionHash")
    cache_valid = not expected_hash or current_hash == expected_hash
    logger.info(
        "Cache validation for %s: %s (v%d)",
        assortment_id,
        "VALID" if cache_valid else "INVALID",
        record.current_version,
    )
    return record.assortment_data, cache_valid, record.current_version


def update_user_modifications(assortment_id, changes):
    """Merge form data, labels and custom fields into ``userModifications``.

    Raises:
        AssortmentNotFound
    """
    with transaction.atomic():
        record = (
            IndividualAssortment.objects.select_for_update()
            .filter(assortment_id=assortment_id)
            .first()
        )
        if record is None:
            raise AssortmentNotFound(assortment_id)

        data = record.assortment_data
        mods = {**_empty_user_modifications(), **(data.get("userModifications") or {})}
        for key in ("formData", "imageLabels", "customFields"):
            if changes.get(key):
                mods[key] = {**(mods.get(key) or {}), **changes[key]}
        mods["lastModified"] = timezone.now().isoformat()
        data["userModifications"] = mods

        record.assortment_data = data
        record.metadata = {**(record.metadata or {}), "hasUserModifications": True}
        record.current_version += 1
        record.last_cache_update = timezone.now()
        record.save()

    logger.info("Updated user modifications for %s (v%d)", assortment_id, record.current_version)
    return record


def invalidate_assortment_cache(assortment_id):
    """Rotate the cache key so clients holding the old one refetch."""
    updated = IndividualAssortment.objects.filter(assortment_id=assortment_id).update(
        cache_key=generate_cache_key(assortment_id, int(time.time() * 1000)),
        last_cache_update=timezone.now(),
    )
    logger.info("Invalidated cache for assortment %s (%d rows)", assortment_id, updated)
    return bool(updated)


def cleanup_stale_assortments(older_than_days=None):
    """Delete rarely used standalone assortments not read since the cutoff."""
    if older_than_days is None:
        older_than_days = _setting("PACKING_RETENTION_DAYS", 30)
    cutoff = timezone.now() - timedelta(days=older_than_days)
    deleted, _ = IndividualAssortment.objects.filter(
        last_accessed_at__lt=cutoff,
        access_count__lt=_setting("PACKING_CACHE_MIN_ACCESS_COUNT", 5),
    ).delete()
    logger.info("Cleaned up %d old cache entries", deleted)
    return deleted


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


def cache_statistics():
    now = timezone.now()
    records = IndividualAssortment.objects.all()
    metrics = [m or {} for m in records.values_list("performance_metrics", flat=True)]

    def _avg(key):
        values = [m[key] for m in metrics if m.get(key) is not None]
        return sum(values) / len(values) if values else 0

    return {
        "totalAssortments": len(metrics),
        "recentlyAccessed": records.filter(
            last_accessed_at__gte=now - timedelta(hours=24)
        ).count(),
        "performance": {
            "avgLoadTime": _avg("averageLoadTime"),
            "avgCacheHitRate": _avg("cacheHitRate"),
            "totalCacheHits": sum(m.get("totalCacheHits") or 0 for m in metrics),
            "totalCacheMisses": sum(m.get("totalCacheMisses") or 0 for m in metrics),
        },
    }


def stats():
    """Delivery counts, success rate and cache statistics."""
    orders = WebhookOrder.objects.exclude(order_name__startswith=INDIVIDUAL_ORDER_PREFIX)
    total = orders.count()
    errors = orders.filter(status=WebhookOrder.Status.ERROR).count()
    recent = orders.filter(received_at__gte=timezone.now() - timedelta(hours=24)).count()

    return {
        "total": total,
        "recent24h": recent,
        "errors": errors,
        "individualAssortments": IndividualAssortment.objects.count(),
        "successRate": f"{(total - errors) / total * 100:.2f}%" if total else "0%",
        "cacheStatistics": cache_statistics(),
    }
