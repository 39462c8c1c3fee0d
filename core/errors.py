"""Error types shared by the catalog store, repository, and backup layers."""

from __future__ import annotations


class CatalogError(Exception):
    """Base class for every catalog failure."""


class NotFoundError(CatalogError):
    """A mutation targeted an id that does not exist.

    Attributes:
        kind: Entity kind, e.g. "set" or "tag".
        entity_id: The id that was looked up.
    """

    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} not found: {entity_id}")
        self.kind = kind
        self.entity_id = entity_id


class CatalogValidationError(CatalogError):
    """A mutation was rejected because its inputs break an invariant."""


class PersistenceError(CatalogError):
    """Writing a document or blob to durable storage failed."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"persist failed for {key}: {reason}")
        self.key = key
        self.reason = reason


class CorruptDocumentError(CatalogError):
    """A stored document could not be decoded."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"corrupt document {key}: {reason}")
        self.key = key
        self.reason = reason


class BackupFormatError(CatalogError):
    """A backup container is malformed or not one of ours."""
