"""ContentPublisher: idempotent publication of identity documents."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from ..models import ContentReference, IdentityMetadata

logger = logging.getLogger(__name__)


class ContentStoreClient(Protocol):
    """Content-addressed store: identical documents yield identical CIDs."""

    async def put(self, document: dict[str, Any], *, name: str) -> str:
        """Store ``document`` and return its CID."""
        ...


class ContentPublisher:
    """Publishes ``IdentityMetadata`` and returns a ``ContentReference``.

    Publication is idempotent: references are cached by the SHA-256 of the
    document's canonical bytes, so republishing the same document makes no
    network write. Errors from the store client propagate unchanged.
    """

    def __init__(self, store: ContentStoreClient) -> None:
        self._store = store
        self._published: dict[str, ContentReference] = {}

    async def publish(self, doc: IdentityMetadata) -> ContentReference:
        digest = doc.content_digest()
        cached = self._published.get(digest)
        if cached is not None:
            logger.debug("Metadata %s already published as %s", digest[:12], cached.cid)
            return cached

        cid = await self._store.put(doc.to_json_dict(), name=doc.name)
        ref = ContentReference.for_cid(cid)
        self._published[digest] = ref
        return ref
