"""Vendor clients and model catalog."""

from model_relay.models.catalog import (
    DEFAULT_CATALOG,
    Capability,
    CostTier,
    ModelDescriptor,
    SpeedTier,
)
from model_relay.models.vendor_client import AsyncVendorClient, Vendor

__all__ = [
    "AsyncVendorClient",
    "Vendor",
    "Capability",
    "CostTier",
    "SpeedTier",
    "ModelDescriptor",
    "DEFAULT_CATALOG",
]
