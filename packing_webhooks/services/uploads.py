"""User-uploaded images layered on top of an assortment's webhook images.

Uploaded files live in ``assortment_data["userModifications"]["uploadedImages"]``
as ``{originalname, filename, mimetype, size, buffer, uploadedAt}`` records,
with ``buffer`` holding the base64-encoded file bytes.
"""

import base64
import copy
import logging
import time
from dataclasses import dataclass
from typing import Optional

from django.db import transaction
from django.utils import timezone

from ..models import IndividualAssortment
from ..utils import SHIPPING_MARK_BUCKETS, UPLOAD_BUCKETS, empty_image_buckets
from .store import AssortmentNotFound

logger = logging.getLogger(__name__)

DEFAULT_UPLOAD_BUCKET = "displayImages"


@dataclass
class DeleteResult:
    success: bool
    message: str
    deleted_count: int = 0
    assortment_data: Optional[dict] = None


def _file_record(upload, index, uploaded_at):
    raw = upload.read()
    name = upload.name
    return {
        "originalname": name,
        "filename": f"{int(time.time() * 1000)}-{index}-{name}",
        "mimetype": getattr(upload, "content_type", None) or "application/octet-stream",
        "size": len(raw),
        "buffer": base64.b64encode(raw).decode("ascii"),
        "uploadedAt": uploaded_at,
    }


def process_uploaded_files(files, image_labels=None, file_mapping=None):
    """Sort uploaded files into image buckets.

    ``file_mapping`` maps the string index of a file to its bucket; unmapped
    files land in ``displayImages``.  Files whose label names a shipping
    mark go to the matching shipping-mark bucket instead.

    Args:
        files: Sequence of Django ``UploadedFile`` objects.
        image_labels: ``{originalname: label}``.
        file_mapping: ``{"0": "itemPackImages", ...}``.

    Returns:
        dict: ``{bucket: [file record, ...]}`` for every upload bucket.
    """
    image_labels = image_labels or {}
    file_mapping = file_mapping or {}
    processed = empty_image_buckets(UPLOAD_BUCKETS)
    uploaded_at = timezone.now().isoformat()

    for index, upload in enumerate(files or []):
        record = _file_record(upload, index, uploaded_at)
        label = image_labels.get(upload.name) or ""
        if "shipping_mark" in label:
            bucket = SHIPPING_MARK_BUCKETS.get(label)
            if bucket is None:
                logger.warning("Unknown shipping mark label %s for %s", label, upload.name)
                continue
        else:
            bucket = file_mapping.get(str(index)) or DEFAULT_UPLOAD_BUCKET
            if bucket not in processed:
                logger.warning("Unknown image bucket %s for %s", bucket, upload.name)
                continue
        processed[bucket].append(record)

    logger.info(
        "Processed uploads: %s",
        ", ".join(f"{bucket}={len(items)}" for bucket, items in processed.items() if items)
        or "none",
    )
    return processed


def _locked_assortment(assortment_id):
    record = (
        IndividualAssortment.objects.select_for_update()
        .filter(assortment_id=assortment_id)
        .first()
    )
    if record is None:
        raise AssortmentNotFound(assortment_id)
    return record


def _user_modifications(record):
    mods = copy.deepcopy(record.user_modifications)
    uploaded = mods.get("uploadedImages") or {}
    mods["uploadedImages"] = {
        bucket: list(uploaded.get(bucket) or []) for bucket in UPLOAD_BUCKETS
    }
    mods.setdefault("imageLabels", {})
    mods.setdefault("customFields", {})
    mods.setdefault("formData", {})
    return mods


def _save_modifications(record, mods, **metadata):
    now = timezone.now()
    mods["lastModified"] = now.isoformat()
    record.assortment_data = {**record.assortment_data, "userModifications": mods}
    record.metadata = {**(record.metadata or {}), "hasUserModifications": True, **metadata}
    record.current_version += 1
    record.last_cache_update = now
    record.save()


def add_uploaded_images(assortment_id, processed, image_labels=None):
    """Append processed uploads to the assortment and merge labels.

    Returns:
        dict: the updated ``assortment_data`` with ``_version`` and
        ``_hasUserModifications`` annotations.

    Raises:
        AssortmentNotFound
    """
    with transaction.atomic():
        record = _locked_assortment(assortment_id)
        mods = _user_modifications(record)
        for bucket in UPLOAD_BUCKETS:
            mods["uploadedImages"][bucket].extend(processed.get(bucket) or [])
        mods["imageLabels"] = {**mods["imageLabels"], **(image_labels or {})}
        _save_modifications(record, mods, lastImageUpload=timezone.now().isoformat())

    logger.info("Updated assortment %s with new images (v%d)", assortment_id, record.current_version)
    return {
        **record.assortment_data,
        "_version": record.current_version,
        "_lastModified": record.last_cache_update.isoformat(),
        "_hasUserModifications": True,
    }


def _image_name(image):
    return image.get("filename") or image.get("originalname")


def delete_images(assortment_id, filenames):
    """Remove every uploaded image whose filename is in *filenames*.

    Images match on ``filename``, or ``originalname`` when no generated
    filename was recorded.  The version only moves when at least one image
    was removed.

    Returns:
        DeleteResult
    """
    wanted = set(filenames or [])
    logger.info("Processing %d image deletions for %s", len(wanted), assortment_id)

    with transaction.atomic():
        try:
            record = _locked_assortment(assortment_id)
        except AssortmentNotFound:
            return DeleteResult(False, f"Assortment {assortment_id} not found")

        if not record.user_modifications.get("uploadedImages"):
            return DeleteResult(True, "No uploaded images found to delete.")

        mods = _user_modifications(record)
        deleted = 0
        for bucket, images in mods["uploadedImages"].items():
            kept = [image for image in images if _image_name(image) not in wanted]
            deleted += len(images) - len(kept)
            mods["uploadedImages"][bucket] = kept

        if not deleted:
            return DeleteResult(
                True,
                "No matching images found to delete.",
                assortment_data=record.assortment_data,
            )

        _save_modifications(record, mods)

    logger.info("Deleted %d images from %s", deleted, assortment_id)
    return DeleteResult(
        True,
        f"{deleted} images deleted successfully.",
        deleted_count=deleted,
        assortment_data=record.assortment_data,
    )


def delete_image(assortment_id, filename):
    """Remove a single uploaded image; an unknown filename is a failure."""
    result = delete_images(assortment_id, [filename])
    if result.success and not result.deleted_count:
        logger.error("Image %s not found in any bucket of %s", filename, assortment_id)
        return DeleteResult(False, f"Image {filename} not found")
    if result.success:
        result.message = "Image deleted successfully"
    return result


def find_image_by_filename(filename):
    """Locate an uploaded image across all assortments.

    Returns:
        tuple: ``(content bytes, mimetype, size)`` or ``None``.
    """
    records = IndividualAssortment.objects.only("assortment_id", "assortment_data")
    for record in records.iterator():
        uploaded = record.user_modifications.get("uploadedImages") or {}
        for bucket in UPLOAD_BUCKETS:
            for image in uploaded.get(bucket) or []:
                if filename in (image.get("filename"), image.get("originalname")):
                    logger.info("Found image %s in %s/%s", filename, record.assortment_id, bucket)
                    content = base64.b64decode(image.get("buffer") or "")
                    return content, image.get("mimetype"), image.get("size") or len(content)

    logger.warning("Image %s not found in any assortment", filename)
    return None
