"""Content-addressed publication of identity metadata."""

from .pinata_client import PinataClient
from .publisher import ContentPublisher, ContentStoreClient

__all__ = ['ContentPublisher', 'ContentStoreClient', 'PinataClient']
