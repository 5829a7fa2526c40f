"""
Provider Protocol Definitions

Uses typing.Protocol for duck-typed interface definitions.
No inheritance required - any class implementing these methods qualifies.

Every backing store (memory, PostgreSQL, remote table-store) implements
``DataProvider``. Entity operations are independent of each other; no
cross-kind integrity is enforced at this level.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from src.portal_data.contracts import (
        EntityKind,
        ExportPayload,
        ImportAtomicity,
        ImportReport,
        ProviderKind,
        Record,
    )


@runtime_checkable
class EntityStore(Protocol):
    """
    Per-kind CRUD contract.

    Identity values are provider-local: the same logical record can carry a
    different ``id`` in another provider or after an export/import cycle.
    """

    async def list(self, kind: EntityKind) -> list[Record]:
        """List all records of a kind. No ordering guarantee beyond provider default."""
        ...

    async def get_by_id(self, kind: EntityKind, record_id: Any) -> Record:
        """Fetch one record. Raises NotFoundError if absent."""
        ...

    async def create(self, kind: EntityKind, fields: Record) -> Record:
        """
        Create a record with a new provider-assigned identity.

        Any ``id`` in ``fields`` is ignored. Raises ValidationError naming the
        field when a required field is absent.
        """
        ...

    async def update(self, kind: EntityKind, record_id: Any, fields: Record) -> Record:
        """Apply a partial update. Raises NotFoundError if the id does not exist."""
        ...

    async def delete(self, kind: EntityKind, record_id: Any) -> None:
        """Delete a record. Raises NotFoundError if the id does not exist."""
        ...

    async def find_by(self, kind: EntityKind, field: str, value: Any) -> Record | None:
        """Return the first record whose ``field`` equals ``value`` exactly."""
        ...


@runtime_checkable
class DataProvider(EntityStore, Protocol):
    """
    A complete backing store: CRUD plus lifecycle and whole-store transfer.

    ``atomicity`` states what ``import_all`` guarantees on failure so callers
    can branch on it instead of assuming every provider is transactional.
    """

    @property
    def kind(self) -> ProviderKind:
        """Which backing store this is."""
        ...

    @property
    def atomicity(self) -> ImportAtomicity:
        """Failure semantics of ``import_all``."""
        ...

    async def connect(self) -> None:
        """
        Acquire resources and verify connectivity with a lightweight probe.

        Raises ConnectivityError; on failure no resources remain held.
        """
        ...

    async def ping(self) -> bool:
        """Run the connectivity probe against already-acquired resources."""
        ...

    async def close(self) -> None:
        """Release every resource held. Safe to call multiple times."""
        ...

    async def list_kinds(self) -> list[EntityKind]:
        """Discover the entity kinds (tables) this store currently holds."""
        ...

    async def export_all(self, kinds: list[EntityKind] | None = None) -> ExportPayload:
        """Read whole kinds; all discovered kinds when ``kinds`` is None."""
        ...

    async def import_all(self, data: ExportPayload) -> ImportReport:
        """
        Replace the content of every kind in ``data``.

        Raises TransactionAbortedError (transactional providers) or
        PartialImportError (per-table providers) on failure.
        """
        ...
