"""Pending image edits for one assortment, applied by :meth:`ImageStagingArea.save`.

Nothing here talks to the API until ``save()``: marking, replacing and
adding files only change local state, and :meth:`ImageStagingArea.discard`
drops it all without a request.

Uploads are ``(filename, content, content_type)`` tuples, the shape
``requests`` accepts for multipart files.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..utils import SHIPPING_MARK_BUCKETS, UPLOAD_BUCKETS

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4

_LABEL_FOR_BUCKET = {bucket: label for label, bucket in SHIPPING_MARK_BUCKETS.items()}


@dataclass
class SaveReport:
    succeeded: List[str] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self):
        return not self.failed


@dataclass
class _Replacement:
    upload: tuple
    bucket: str


def _image_name(image):
    return image.get("filename") or image.get("originalname")


class ImageStagingArea:
    def __init__(self, client, assortment_id, cache_manager=None, max_workers=DEFAULT_MAX_WORKERS):
        self.client = client
        self.assortment_id = assortment_id
        self.cache_manager = cache_manager
        self.max_workers = max_workers
        self._deletions = set()
        self._replacements: Dict[str, _Replacement] = {}
        self._additions: Dict[str, List[tuple]] = {}
        self._labels: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def mark_for_deletion(self, filename):
        # A slot is either deleted or replaced, never both.
        self._replacements.pop(filename, None)
        self._deletions.add(filename)

    def unmark_for_deletion(self, filename):
        self._deletions.discard(filename)

    def stage_replacement(self, filename, upload, bucket):
        self._check_bucket(bucket)
        self._deletions.discard(filename)
        self._replacements[filename] = _Replacement(upload, bucket)

    def unstage_replacement(self, filename):
        self._replacements.pop(filename, None)

    def add_file(self, upload, bucket, label: Optional[str] = None):
        self._check_bucket(bucket)
        self._additions.setdefault(bucket, []).append(upload)
        label = label or _LABEL_FOR_BUCKET.get(bucket)
        if label:
            self._labels[upload[0]] = label

    def discard(self):
        self._deletions.clear()
        self._replacements.clear()
        self._additions.clear()
        self._labels.clear()

    @property
    def pending_deletions(self):
        return frozenset(self._deletions)

    @property
    def pending_replacements(self):
        return {name: (r.upload, r.bucket) for name, r in self._replacements.items()}

    @property
    def pending_additions(self):
        return {bucket: list(files) for bucket, files in self._additions.items() if files}

    def has_changes(self):
        return bool(self._deletions or self._replacements or self.pending_additions)

    def decorate(self, items):
        """Copies of *items* flagged with ``pendingDelete``/``pendingReplacement``."""
        decorated = []
        for item in items or []:
            name = _image_name(item)
            decorated.append(
                {
                    **item,
                    "pendingDelete": name in self._deletions,
                    "pendingReplacement": name in self._replacements,
                }
            )
        return decorated

    def _check_bucket(self, bucket):
        if bucket not in UPLOAD_BUCKETS:
            raise ValueError(f"Unknown image bucket: {bucket}")

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def _delete_batch(self, filenames):
        self.client.delete_images(self.assortment_id, sorted(filenames))

    def _replace(self, filename, replacement):
        self.client.delete_image(self.assortment_id, filename)
        self._upload([replacement.upload], replacement.bucket)

    def _upload(self, uploads, bucket):
        labels = {u[0]: self._labels[u[0]] for u in uploads if u[0] in self._labels}
        label = _LABEL_FOR_BUCKET.get(bucket)
        if label:
            labels.update({u[0]: label for u in uploads})
        self.client.upload_images(
            self.assortment_id,
            uploads,
            file_mapping={str(index): bucket for index in range(len(uploads))},
            image_labels=labels,
        )

    def _operations(self):
        operations = []
        if self._deletions:
            names = set(self._deletions)
            operations.append((f"delete:{','.join(sorted(names))}", self._delete_batch, (names,)))
        for filename, replacement in self._replacements.items():
            operations.append(
                (f"replace:{filename}->{replacement.upload[0]}", self._replace, (filename, replacement))
            )
        for bucket, uploads in self.pending_additions.items():
            operations.append((f"upload:{bucket}", self._upload, (list(uploads), bucket)))
        return operations

    def save(self):
        """Apply every staged edit and report each operation's outcome.

        The batch delete, each replacement (delete then upload) and each
        per-bucket upload run as independent operations on a thread pool;
        one failing does not stop the others.
        """
        report = SaveReport()
        operations = self._operations()
        if not operations:
            return report

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {pool.submit(func, *args): name for name, func, args in operations}
            for future in as_completed(futures):
                name = futures[future]
                try:
                    future.result()
                except Exception as exc:
                    logger.exception("Staged operation %s failed for %s", name, self.assortment_id)
                    report.failed.append((name, str(exc)))
                else:
                    report.succeeded.append(name)

        logger.info(
            "Saved staged edits for %s: %d succeeded, %d failed",
            self.assortment_id,
            len(report.succeeded),
            len(report.failed),
        )
        self.discard()
        if self.cache_manager is not None:
            self.cache_manager.invalidate(self.assortment_id)
        return report
