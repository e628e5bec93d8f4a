"""ERC-8004 identity metadata."""

from .metadata import (
    MAX_CAPABILITIES,
    MAX_DESCRIPTION_LENGTH,
    MAX_NAME_LENGTH,
    EndpointConfig,
    MetadataBuilder,
    build_identity_metadata,
)

__all__ = [
    'MAX_CAPABILITIES',
    'MAX_DESCRIPTION_LENGTH',
    'MAX_NAME_LENGTH',
    'EndpointConfig',
    'MetadataBuilder',
    'build_identity_metadata',
]
