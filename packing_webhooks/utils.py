"""Utility helpers for the packing-instruction webhooks app."""

from django.conf import settings

# The four flat image buckets; ``itemPackImages`` is a list of packs.
FLAT_IMAGE_BUCKETS = (
    "itemBarcodeImages",
    "displayImages",
    "innerCartonImages",
    "masterCartonImages",
)
IMAGE_BUCKETS = ("itemPackImages",) + FLAT_IMAGE_BUCKETS

SHIPPING_MARK_BUCKETS = {
    "inner_shipping_mark": "innerCartonShippingMarks",
    "main_shipping_mark": "masterCartonMainShippingMarks",
    "side_shipping_mark": "masterCartonSideShippingMarks",
}
UPLOAD_BUCKETS = IMAGE_BUCKETS + tuple(SHIPPING_MARK_BUCKETS.values())

# Item numbers look like "A000404"; order names carrying this prefix with a
# single assortment belong on the individual-assortment endpoint.
ASSORTMENT_ID_PREFIX = "A"

# Synthetic order names created for standalone assortments.
INDIVIDUAL_ORDER_PREFIX = "INDIVIDUAL_"


def empty_image_buckets(buckets=IMAGE_BUCKETS):
    """Return a fresh ``{bucket: []}`` dict."""
    return {bucket: [] for bucket in buckets}


def count_images(pcf_images):
    """Count images across the five ``pcfImages`` buckets.

    Every pack in ``itemPackImages`` contributes its length; the flat
    buckets contribute theirs.  This is the only counting rule: webhook
    metadata, stats and the client-side merged view all call it.

    Examples::

        >>> count_images({
        ...     "itemPackImages": [["a", "b"], ["c"]],
        ...     "itemBarcodeImages": ["x"],
        ...     "masterCartonImages": ["y", "z"],
        ... })
        6
    """
    if not pcf_images:
        return 0
    total = sum(len(pack or []) for pack in pcf_images.get("itemPackImages") or [])
    for bucket in FLAT_IMAGE_BUCKETS:
        total += len(pcf_images.get(bucket) or [])
    return total


def count_assortment_images(assortments):
    """Sum :func:`count_images` over a list of assortment dicts."""
    return sum(count_images((a or {}).get("pcfImages")) for a in assortments or [])


def is_item_number(assortment_id):
    """Return True when *assortment_id* is an item number rather than a numeric id."""
    return bool(assortment_id) and assortment_id[0].isalpha()


def individual_order_name(item_no):
    return f"{INDIVIDUAL_ORDER_PREFIX}{item_no}"


def get_frontend_url():
    """Base URL of the packing-instruction frontend, for links in responses."""
    return getattr(settings, "PACKING_FRONTEND_URL", "http://localhost:5138").rstrip("/")
