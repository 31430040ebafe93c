"""HTTP client for the packing-instruction webhook API.

Reads (GET) are retried up to ``max_retries`` times with exponential
backoff, except on 404.  Mutations are sent once.
"""

import json
import logging
import time

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
DEFAULT_MAX_RETRIES = 3
MAX_RETRY_DELAY = 30.0


class PackingInstructionAPIError(Exception):
    """Non-2xx response, or a request that never got one."""

    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}


class AssortmentNotFoundError(PackingInstructionAPIError):
    """404 from the API. Never retried."""


def retry_delay(attempt):
    """Seconds to wait before retry number *attempt* (0-based)."""
    return min(1.0 * 2 ** attempt, MAX_RETRY_DELAY)


class PackingInstructionClient:
    def __init__(
        self,
        base_url,
        timeout=DEFAULT_TIMEOUT,
        max_retries=DEFAULT_MAX_RETRIES,
        session=None,
        sleep=time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = session or requests.Session()
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _url(self, path):
        return f"{self.base_url}/webhook/{path.lstrip('/')}"

    def _send(self, method, path, **kwargs):
        url = self._url(path)
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise PackingInstructionAPIError(f"{method} {url} failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = {"message": response.text}

        if response.status_code == 404:
            raise AssortmentNotFoundError(
                payload.get("message") or f"Not found: {url}",
                status_code=404,
                payload=payload,
            )
        if not response.ok:
            raise PackingInstructionAPIError(
                payload.get("message") or f"HTTP {response.status_code} from {url}",
                status_code=response.status_code,
                payload=payload,
            )
        return payload

    def _get(self, path, params=None):
        attempt = 0
        while True:
            try:
                return self._send("GET", path, params=params)
            except AssortmentNotFoundError:
                raise
            except PackingInstructionAPIError as exc:
                if attempt >= self.max_retries:
                    logger.error("GET %s failed after %d retries: %s", path, attempt, exc)
                    raise
                delay = retry_delay(attempt)
                logger.warning(
                    "GET %s failed (%s), retry %d/%d in %.0fs",
                    path,
                    exc,
                    attempt + 1,
                    self.max_retries,
                    delay,
                )
                self._sleep(delay)
                attempt += 1

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_assortment(self, assortment_id, expected_hash=None):
        """Return the ``GET assortment/<id>`` envelope.

        With *expected_hash* the server also reports whether a client copy
        carrying that collection hash is still current (``cacheValid``).
        """
        params = None
        if expected_hash:
            params = {"validateCache": "true", "expectedHash": expected_hash}
        return self._get(f"assortment/{assortment_id}", params=params)

    def get_order(self, order_name):
        return self._get(f"data/{order_name}")

    def get_stats(self):
        return self._get("stats")

    def get_recent(self, limit=None):
        return self._get(f"recent/{limit}" if limit else "recent")

    def get_cache_stats(self):
        return self._get("cache/stats")

    def health(self):
        return self._get("health")

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def save_assortment(self, assortment, source_order_name=None):
        return self._send(
            "POST",
            "assortment/save",
            json={"assortment": assortment, "sourceOrderName": source_order_name},
        )

    def update_assortment(self, assortment_id, user_modifications):
        return self._send(
            "PATCH",
            f"assortment/{assortment_id}",
            json={"userModifications": user_modifications},
        )

    def upload_images(self, assortment_id, files, file_mapping=None, image_labels=None):
        """Upload ``(filename, content, content_type)`` tuples.

        ``file_mapping`` maps the index of each file to its target bucket.
        """
        return self._send(
            "PATCH",
            f"assortment/{assortment_id}/images",
            files=[("files", upload) for upload in files],
            data={
                "fileMapping": json.dumps(file_mapping or {}),
                "imageLabels": json.dumps(image_labels or {}),
            },
        )

    def delete_images(self, assortment_id, filenames):
        return self._send(
            "DELETE",
            f"assortment/{assortment_id}/images/batch",
            json={"imageIds": list(filenames)},
        )

    def delete_image(self, assortment_id, filename):
        return self._send("DELETE", f"assortment/{assortment_id}/images/{filename}")

    def invalidate_cache(self, assortment_id):
        return self._send("DELETE", f"cache/{assortment_id}")
