"""Python client for the packing-instruction webhook API."""

from .api import AssortmentNotFoundError, PackingInstructionAPIError, PackingInstructionClient
from .cache import AssortmentCacheManager, DurableCache, QueryCache
from .staging import ImageStagingArea, SaveReport

__all__ = [
    "AssortmentCacheManager",
    "AssortmentNotFoundError",
    "DurableCache",
    "ImageStagingArea",
    "PackingInstructionAPIError",
    "PackingInstructionClient",
    "QueryCache",
    "SaveReport",
]
