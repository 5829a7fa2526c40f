"""
Provider Registry

Owns the single active provider and performs provider switches.

    registry = ProviderRegistry(config)
    await registry.initialize()          # resume the persisted provider
    await registry.switch(descriptor, actor="admin")
    records = await registry.current.list("departments")
    await registry.close()

A switch probes the target before touching anything: if the probe fails the
active provider and its descriptor are left exactly as they were.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from src.portal_data.audit import AuditSink, LoggingAuditSink, record_audit
from src.portal_data.config import DataAdminConfig
from src.portal_data.contracts import (
    AuditAction,
    EntitySchemaRegistry,
    MemoryProviderConfig,
    PostgresProviderConfig,
    ProviderDescriptor,
    ProviderKind,
    RemoteTableProviderConfig,
    redact_descriptor,
)
from src.portal_data.exceptions import (
    ConfigurationError,
    ConnectivityError,
    PortalDataError,
    SwitchInProgressError,
)
from src.portal_data.logging import is_redacted
from src.portal_data.storage.memory import MemoryProvider
from src.portal_data.storage.protocols import DataProvider
from src.portal_data.storage.settings_store import ProviderSettingsStore

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[ProviderDescriptor], DataProvider]


def build_provider(
    descriptor: ProviderDescriptor,
    schemas: EntitySchemaRegistry | None = None,
) -> DataProvider:
    """
    Construct an unconnected provider for a descriptor.

    Raises:
        ValueError: If the descriptor type is unknown
    """
    if isinstance(descriptor, MemoryProviderConfig):
        return MemoryProvider(schemas)

    if isinstance(descriptor, PostgresProviderConfig):
        from src.portal_data.storage.postgres import PostgresProvider

        return PostgresProvider(descriptor, schemas)

    if isinstance(descriptor, RemoteTableProviderConfig):
        from src.portal_data.storage.remote import RemoteTableProvider

        return RemoteTableProvider(descriptor, schemas)

    raise ValueError(f"Unknown provider descriptor: {type(descriptor).__name__}")


class ProviderRegistry:
    """
    Holds the active provider and serializes switches.

    The active ``(descriptor, provider)`` pair lives in one attribute that is
    only ever replaced whole, so reads need no lock. Switches hold an
    ``asyncio.Lock``; a switch requested while another is running is
    rejected with SwitchInProgressError rather than queued.

    Attributes:
        current: The active provider
        descriptor: Descriptor the active provider was built from
    """

    def __init__(
        self,
        config: DataAdminConfig | None = None,
        audit: AuditSink | None = None,
        settings_store: ProviderSettingsStore | None = None,
        factory: ProviderFactory | None = None,
        schemas: EntitySchemaRegistry | None = None,
    ) -> None:
        self._config = config or DataAdminConfig()
        self._audit = audit or LoggingAuditSink()
        self._settings = settings_store or ProviderSettingsStore(self._config.settings_path)
        self._factory = factory or (lambda descriptor: build_provider(descriptor, schemas))
        self._lock = asyncio.Lock()

        initial = MemoryProviderConfig()
        self._state: tuple[ProviderDescriptor, DataProvider] = (
            initial,
            self._factory(initial),
        )

    @property
    def current(self) -> DataProvider:
        return self._state[1]

    @property
    def descriptor(self) -> ProviderDescriptor:
        return self._state[0]

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind(self._state[0].kind)

    @property
    def is_switching(self) -> bool:
        return self._lock.locked()

    @property
    def config(self) -> DataAdminConfig:
        return self._config

    def describe(self) -> dict[str, Any]:
        """Active provider kind plus its redacted configuration."""
        return {"provider": self.kind.value, "config": redact_descriptor(self.descriptor)}

    # -------------------------------------------------------------------------
    # Switching
    # -------------------------------------------------------------------------

    async def resolve_descriptor(
        self,
        kind: ProviderKind | str,
        overrides: dict[str, Any] | None = None,
        actor: str | None = None,
        operation: AuditAction = AuditAction.PROVIDER_SWITCH,
    ) -> ProviderDescriptor:
        """
        Build a descriptor from configuration plus ``overrides``.

        A rejected request is audited against ``operation`` before it is raised.

        Raises:
            ConfigurationError: Unknown kind or incomplete settings
        """
        try:
            return self._config.descriptor_for(kind, overrides)
        except ConfigurationError as e:
            target = kind.value if isinstance(kind, ProviderKind) else kind
            await record_audit(
                self._audit,
                AuditAction.ERROR,
                actor,
                f"Provider request for {target} rejected",
                {"operation": operation.value, "target": target, "error": str(e)},
            )
            raise

    async def switch(
        self,
        descriptor: ProviderDescriptor,
        actor: str | None = None,
    ) -> ProviderDescriptor:
        """
        Make ``descriptor`` the active provider.

        Order: probe the target, close the old provider, install the new one,
        persist the redacted selection.

        Raises:
            SwitchInProgressError: Another switch is running
            ConnectivityError: Probe failed; nothing changed
            ConfigurationError: Switched, but the selection could not be persisted
        """
        target_kind = descriptor.kind
        if self._lock.locked():
            raise SwitchInProgressError(target_kind)

        async with self._lock:
            previous_descriptor, previous = self._state
            if descriptor == previous_descriptor:
                logger.info(f"Provider {target_kind} already active, nothing to switch")
                return descriptor

            logger.info(f"Switching provider: {previous_descriptor.kind} -> {target_kind}")
            target = self._factory(descriptor)
            try:
                await target.connect()
            except PortalDataError as e:
                await target.close()
                logger.warning(f"Provider switch to {target_kind} aborted: {e}")
                await record_audit(
                    self._audit,
                    AuditAction.ERROR,
                    actor,
                    f"Provider switch to {target_kind} failed",
                    {
                        "operation": AuditAction.PROVIDER_SWITCH.value,
                        "target": redact_descriptor(descriptor),
                        "error": str(e),
                    },
                )
                raise

            try:
                await previous.close()
            except Exception as e:
                logger.error(f"Error closing previous {previous_descriptor.kind} provider: {e}")

            self._state = (descriptor, target)
            logger.info(f"Provider switched to {target_kind}")

            try:
                self._settings.save(descriptor)
            except OSError as e:
                logger.error(f"Could not persist provider selection: {e}")
                await record_audit(
                    self._audit,
                    AuditAction.ERROR,
                    actor,
                    f"Provider switched to {target_kind} but selection was not persisted",
                    {"operation": AuditAction.PROVIDER_SWITCH.value, "error": str(e)},
                )
                raise ConfigurationError(str(self._settings.path), str(e)) from e

            await record_audit(
                self._audit,
                AuditAction.PROVIDER_SWITCH,
                actor,
                f"Switched data provider from {previous_descriptor.kind} to {target_kind}",
                {
                    "from": previous_descriptor.kind,
                    "to": target_kind,
                    "config": redact_descriptor(descriptor),
                },
            )
            return descriptor

    async def test_connection(
        self,
        descriptor: ProviderDescriptor,
        actor: str | None = None,
    ) -> None:
        """
        Probe a provider without switching to it.

        Raises:
            ConnectivityError: The probe failed
        """
        metadata = {"target": redact_descriptor(descriptor)}
        if descriptor == self.descriptor:
            target, owned = self.current, False
        else:
            target, owned = self._factory(descriptor), True

        try:
            if owned:
                await target.connect()
            elif not await target.ping():
                raise ConnectivityError(descriptor.kind, "active provider did not answer the probe")
        except PortalDataError as e:
            await record_audit(
                self._audit,
                AuditAction.PROVIDER_TEST,
                actor,
                f"Connection test to {descriptor.kind} failed",
                {**metadata, "error": str(e), "success": False},
            )
            raise
        finally:
            if owned:
                await target.close()

        await record_audit(
            self._audit,
            AuditAction.PROVIDER_TEST,
            actor,
            f"Connection test to {descriptor.kind} succeeded",
            {**metadata, "success": True},
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _resume_descriptor(self) -> ProviderDescriptor:
        """Persisted selection with redacted secrets re-hydrated from configuration."""
        persisted = self._settings.load()
        if persisted is None:
            return self._config.descriptor_for(self._config.provider)

        stored = persisted.get("config") or {}
        overrides = {
            key: value
            for key, value in stored.items()
            if key != "kind" and not is_redacted(value)
        }
        return self._config.descriptor_for(persisted["kind"], overrides)

    async def initialize(self) -> None:
        """
        Resume the persisted provider, falling back to memory if it is unusable.

        Never raises for an unreachable or misconfigured provider: the process
        must still come up so an operator can switch to a working one.
        """
        async with self._lock:
            try:
                descriptor = self._resume_descriptor()
            except ConfigurationError as e:
                logger.error(f"Persisted provider is misconfigured, staying on memory: {e}")
                return

            if descriptor == self.descriptor:
                logger.info(f"Data provider: {descriptor.kind}")
                return

            target = self._factory(descriptor)
            try:
                await target.connect()
            except PortalDataError as e:
                await target.close()
                logger.error(f"Could not resume {descriptor.kind} provider, staying on memory: {e}")
                return

            previous = self.current
            self._state = (descriptor, target)
            await previous.close()
            logger.info(f"Resumed data provider: {descriptor.kind}")

    async def close(self) -> None:
        """Release the active provider's resources."""
        await self.current.close()
        logger.debug("ProviderRegistry closed")
