"""
Persisted Provider Selection

Stores which provider is active, with a redacted copy of its configuration,
so a restarted process resumes on the same provider. Secrets never reach the
file; they are re-hydrated from configuration on startup.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from src.portal_data.contracts import ProviderDescriptor, redact_descriptor

logger = logging.getLogger(__name__)


class ProviderSettingsStore:
    """JSON file holding ``{kind, config, updated_at}``."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any] | None:
        """Return the persisted selection, or None if absent or unreadable."""
        if not self._path.exists():
            return None
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable provider settings {self._path}: {e}")
            return None
        if not isinstance(data, dict) or "kind" not in data:
            logger.warning(f"Ignoring malformed provider settings {self._path}")
            return None
        return data

    def save(self, descriptor: ProviderDescriptor) -> dict[str, Any]:
        """
        Persist the redacted descriptor.

        Written to a temp file in the same directory then renamed over the
        target, so readers never see a half-written file.
        """
        record = {
            "kind": descriptor.kind,
            "config": redact_descriptor(descriptor),
            "updated_at": datetime.now(UTC).isoformat(),
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record, f, indent=2)
            os.replace(tmp_name, self._path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"Persisted provider selection to {self._path}")
        return record
