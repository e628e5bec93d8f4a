"""Bonfire provisioning: ERC-8004 identity registration and backend setup."""

from .models import (
    ChainReceipt,
    ContentReference,
    IdentityMetadata,
    ProvisionFormData,
    ProvisionStatus,
    ServiceEndpoint,
)
from .settings import ProvisioningSettings

__version__ = "0.1.0"

__all__ = [
    "ChainReceipt",
    "ContentReference",
    "IdentityMetadata",
    "ProvisionFormData",
    "ProvisionStatus",
    "ProvisioningSettings",
    "ServiceEndpoint",
]
