"""Two-level cache for assortment documents.

Both levels sit on Django cache backends: ``QueryCache`` on a
``LocMemCache`` with a short timeout, ``DurableCache`` on a
``FileBasedCache`` that keeps the same payloads, minus image bodies, across
restarts.  ``AssortmentCacheManager`` reads through both before hitting the
API.
"""

import copy
import logging
import uuid

from django.core.cache.backends.filebased import FileBasedCache
from django.core.cache.backends.locmem import LocMemCache

from ..utils import FLAT_IMAGE_BUCKETS

logger = logging.getLogger(__name__)

ASSORTMENT_KIND = "webhook-assortment"
STORAGE_KEY = "assortment-cache"
VERSION_KEY = "assortment-cache-version"
CACHE_SCHEMA_VERSION = "1.0.1"

DEFAULT_STALE_AFTER = 5 * 60
DEFAULT_MAX_AGE = 24 * 60 * 60
DEFAULT_MAX_ENTRIES = 1000

# Cache VERSION under which the schema marker itself is stored.
MARKER_VERSION = 0


class QueryCache:
    """In-memory cache keyed by ``(kind, id)`` on a ``LocMemCache``.

    Entries go stale after ``stale_after`` seconds.  Each instance gets its
    own location unless one is passed in, since ``LocMemCache`` instances
    with the same name share storage.
    """

    def __init__(self, stale_after=DEFAULT_STALE_AFTER, location=None):
        self.stale_after = stale_after
        self.location = location or f"{STORAGE_KEY}-{uuid.uuid4().hex}"
        self._cache = LocMemCache(
            self.location,
            {"TIMEOUT": stale_after, "OPTIONS": {"MAX_ENTRIES": DEFAULT_MAX_ENTRIES}},
        )

    def _key(self, kind, key):
        return f"{kind}:{key}"

    def get(self, kind, key):
        """Return the cached value, or ``None`` when missing or stale."""
        return self._cache.get(self._key(kind, key))

    def set(self, kind, key, value):
        self._cache.set(self._key(kind, key), value)

    def invalidate(self, kind, key):
        self._cache.delete(self._key(kind, key))

    def clear(self):
        self._cache.clear()


def _strip_image_list(images, field):
    for image in images or []:
        if isinstance(image, dict):
            image.pop(field, None)


def _strip_pcf_images(pcf_images):
    if not isinstance(pcf_images, dict):
        return
    for bucket in FLAT_IMAGE_BUCKETS:
        _strip_image_list(pcf_images.get(bucket), "image")
    for pack in pcf_images.get("itemPackImages") or []:
        _strip_image_list(pack, "image")


def strip_image_data(data):
    """Deep copy of *data* without base64 image bodies or upload buffers.

    Handles both a raw assortment (``pcfImages``/``userModifications``) and
    a transformed ``AssortmentData`` (``baseAssortment``/``mergedData``).
    """
    if data is None:
        return None
    stripped = copy.deepcopy(data)

    _strip_pcf_images(stripped.get("pcfImages"))
    base = stripped.get("baseAssortment") or {}
    _strip_pcf_images(base.get("webhookImages"))
    merged = stripped.get("mergedData") or {}
    _strip_pcf_images(merged.get("webhookImages"))
    _strip_pcf_images(merged.get("allImages"))
    _strip_pcf_images((merged.get("assortment") or {}).get("pcfImages"))

    uploaded = (stripped.get("userModifications") or {}).get("uploadedImages") or {}
    for images in uploaded.values():
        _strip_image_list(images, "buffer")
    # Uploaded pack images are merged into allImages as a nested list.
    for pack in (merged.get("allImages") or {}).get("itemPackImages") or []:
        _strip_image_list(pack, "buffer")
    for bucket in FLAT_IMAGE_BUCKETS:
        _strip_image_list((merged.get("allImages") or {}).get(bucket), "buffer")
    return stripped


class DurableCache:
    """Assortments persisted under *directory* on a ``FileBasedCache``.

    Entries are keyed with the schema version as the cache ``VERSION`` and
    expire after ``max_age`` seconds.  A version marker kept outside the
    schema version is compared on construction; a mismatch wipes the
    directory.
    """

    def __init__(self, directory, schema_version=CACHE_SCHEMA_VERSION, max_age=DEFAULT_MAX_AGE):
        self.directory = directory
        self.schema_version = schema_version
        self.max_age = max_age
        self._cache = FileBasedCache(
            directory,
            {
                "TIMEOUT": max_age,
                "KEY_PREFIX": STORAGE_KEY,
                "VERSION": schema_version,
                "OPTIONS": {"MAX_ENTRIES": DEFAULT_MAX_ENTRIES},
            },
        )
        self._clear_if_version_mismatch()

    def stored_version(self):
        return self._cache.get(VERSION_KEY, version=MARKER_VERSION)

    def _write_version_marker(self):
        self._cache.set(VERSION_KEY, self.schema_version, timeout=None, version=MARKER_VERSION)

    def _clear_if_version_mismatch(self):
        stored = self.stored_version()
        if stored != self.schema_version:
            logger.info(
                "Cache schema changed (%s -> %s), clearing durable cache",
                stored,
                self.schema_version,
            )
            self.clear()

    def get(self, assortment_id):
        return self._cache.get(assortment_id)

    def set(self, assortment_id, data):
        try:
            self._cache.set(assortment_id, strip_image_data(data))
        except OSError:
            logger.warning("Failed to store assortment %s", assortment_id, exc_info=True)

    def remove(self, assortment_id):
        self._cache.delete(assortment_id)

    def clear(self):
        self._cache.clear()
        self._write_version_marker()


class AssortmentCacheManager:
    """Read-through cache: query cache, then durable cache, then the API."""

    def __init__(self, client, query_cache, durable_cache):
        self.client = client
        self.query_cache = query_cache
        self.durable_cache = durable_cache
        self._hits = {"query": 0, "durable": 0, "network": 0}

    def get(self, assortment_id):
        data = self.query_cache.get(ASSORTMENT_KIND, assortment_id)
        if data is not None:
            self._hits["query"] += 1
            return data

        data = self.durable_cache.get(assortment_id)
        if data is not None:
            self._hits["durable"] += 1
            self.query_cache.set(ASSORTMENT_KIND, assortment_id, data)
            return data

        self._hits["network"] += 1
        response = self.client.get_assortment(assortment_id)
        data = response.get("data")
        self.set(assortment_id, data)
        return data

    def set(self, assortment_id, data):
        self.query_cache.set(ASSORTMENT_KIND, assortment_id, data)
        self.durable_cache.set(assortment_id, data)

    def invalidate(self, assortment_id):
        self.query_cache.invalidate(ASSORTMENT_KIND, assortment_id)
        self.durable_cache.remove(assortment_id)
        logger.info("Invalidated cached assortment %s", assortment_id)

    def clear(self):
        self.query_cache.clear()
        self.durable_cache.clear()

    def stats(self):
        return {"hits": dict(self._hits)}
