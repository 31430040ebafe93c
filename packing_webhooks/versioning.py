"""Content hashing and version bookkeeping for assortment images.

Every image in a ``pcfImages`` collection is hashed individually; the
collection hash is derived from the sorted ``key:hash`` pairs so that it
does not depend on the order in which buckets or images were visited.
The collection hash is what decides whether a re-delivered assortment
counts as a new version.
"""

import base64
import binascii
import copy
import hashlib
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from django.utils import timezone

from .utils import FLAT_IMAGE_BUCKETS

logger = logging.getLogger(__name__)

_NON_BASE64 = re.compile(r"[^A-Za-z0-9+/]")
_DATA_URL_PREFIX = re.compile(r"^data:image/([^;]+);base64,")
DEFAULT_MIME_TYPE = "image/jpeg"


@dataclass(frozen=True)
class ImageHash:
    hash: str
    size: int
    mime_type: str


@dataclass
class CollectionHash:
    collection_hash: str
    total_images: int
    individual_hashes: Dict[str, str] = field(default_factory=dict)
    changed_images: Optional[List[str]] = None


def _decode(base64_data):
    try:
        return base64.b64decode(base64_data)
    except (binascii.Error, ValueError):
        pass
    # Upstream payloads sometimes arrive wrapped, unpadded or with stray
    # characters; decode whatever base64 alphabet is left.
    cleaned = _NON_BASE64.sub("", base64_data)
    if len(cleaned) % 4 == 1:
        cleaned = cleaned[:-1]
    cleaned += "=" * (-len(cleaned) % 4)
    logger.warning("Malformed base64 image payload, decoded leniently")
    return base64.b64decode(cleaned)


def hash_image(base64_image):
    """Hash one base64 image, with or without a ``data:`` URL prefix.

    Returns:
        ImageHash: SHA-256 hex digest and byte length of the decoded bytes,
        plus the mime type from the data URL (``image/jpeg`` if absent).
    """
    base64_image = str(base64_image)
    match = _DATA_URL_PREFIX.match(base64_image)
    payload = base64_image[match.end():] if match else base64_image
    raw = _decode(payload)
    mime_type = f"image/{match.group(1)}" if match else DEFAULT_MIME_TYPE
    return ImageHash(
        hash=hashlib.sha256(raw).hexdigest(),
        size=len(raw),
        mime_type=mime_type,
    )


def _iter_keyed_images(pcf_images):
    """Yield ``(key, image)`` for every image that carries pixel data."""
    if not pcf_images:
        return

    for pack_index, pack in enumerate(pcf_images.get("itemPackImages") or []):
        for image_index, image in enumerate(pack or []):
            if image and image.get("image"):
                key = f"itemPack_{pack_index}_{image_index}_{image.get('componentName')}"
                yield key, image

    for bucket in FLAT_IMAGE_BUCKETS:
        for index, image in enumerate(pcf_images.get(bucket) or []):
            if image and image.get("image"):
                yield f"{bucket}_{index}_{image.get('componentName')}", image


def _individual_hashes(pcf_images):
    return {key: hash_image(image["image"]).hash for key, image in _iter_keyed_images(pcf_images)}


def hash_collection(pcf_images, previous=None):
    """Hash a whole ``pcfImages`` collection.

    Args:
        pcf_images: Collection with the five image buckets.
        previous: Optional earlier collection; keys present on both sides
            whose hashes differ are reported in ``changed_images``.

    Returns:
        CollectionHash
    """
    hashes = _individual_hashes(pcf_images)
    combined = "|".join(f"{key}:{hashes[key]}" for key in sorted(hashes))
    collection_hash = hashlib.sha256(combined.encode("utf-8")).hexdigest()

    changed = None
    if previous:
        previous_hashes = _individual_hashes(previous)
        changed = [
            key
            for key, digest in hashes.items()
            if key in previous_hashes and previous_hashes[key] != digest
        ] or None

    return CollectionHash(
        collection_hash=collection_hash,
        total_images=len(hashes),
        individual_hashes=hashes,
        changed_images=changed,
    )


def process_images_with_hashing(pcf_images):
    """Return a copy of *pcf_images* with hash metadata stamped on each image."""
    if not pcf_images:
        return pcf_images

    processed = copy.deepcopy(pcf_images)
    stamped_at = timezone.now().isoformat()
    total = 0
    for _key, image in _iter_keyed_images(processed):
        digest = hash_image(image["image"])
        image["imageHash"] = digest.hash
        image["imageSize"] = digest.size
        image["imageMimeType"] = digest.mime_type
        image["lastUpdated"] = stamped_at
        total += 1

    processed["totalImageCount"] = total
    processed["lastImageUpdate"] = stamped_at
    processed["imageCollectionHash"] = hash_collection(processed).collection_hash
    return processed


def should_update_images(current, stored):
    """True when *current* differs from *stored* (or nothing is stored yet)."""
    if not stored:
        return True
    return hash_collection(current).collection_hash != hash_collection(stored).collection_hash


def generate_cache_key(assortment_id, version):
    return f"assortment_{assortment_id}_v{version}_{int(time.time() * 1000)}"


def version_history_entry(version, collection_hash, changed_images=None, total_images=None):
    return {
        "version": version,
        "imageCollectionHash": collection_hash,
        "receivedAt": timezone.now().isoformat(),
        "changedImages": changed_images,
        "totalImages": total_images,
    }


def trim_version_history(history, keep=10):
    """Keep the *keep* most recent entries, newest first."""
    ordered = sorted(history, key=lambda entry: entry.get("version", 0), reverse=True)
    return ordered[:keep]


def update_performance_metrics(metrics, load_time_ms, cache_hit):
    """Fold one access into the running performance metrics dict.

    ``averageLoadTime`` is a two-point moving average, as it always was;
    it favours recent loads rather than being a true mean.
    """
    metrics = dict(metrics or {})
    hits = metrics.get("totalCacheHits") or 0
    misses = metrics.get("totalCacheMisses") or 0
    if cache_hit:
        hits += 1
    else:
        misses += 1

    total = hits + misses
    metrics["totalCacheHits"] = hits
    metrics["totalCacheMisses"] = misses
    metrics["cacheHitRate"] = (hits / total) * 100 if total else 0
    metrics["averageLoadTime"] = ((metrics.get("averageLoadTime") or 0) + load_time_ms) / 2
    metrics["lastPerformanceCheck"] = timezone.now().isoformat()
    return metrics
