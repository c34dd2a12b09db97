"""Audit log of user-visible actions, newest first."""

from __future__ import annotations

from typing import Sequence

from pydantic import ValidationError

from rdpanel.config.constants import AUDIT_MAX_ENTRIES
from rdpanel.core.types import AuditEntry, AuditStatus
from rdpanel.observability.logger import get_logger
from rdpanel.storage.kv import KeyValueStore

logger = get_logger(__name__)

AUDIT_KEY = "audit-logs"


class AuditLog:
    """Bounded, persisted list of audit entries."""

    def __init__(self, store: KeyValueStore, max_entries: int = AUDIT_MAX_ENTRIES):
        self.store = store
        self.max_entries = max_entries

    def add(
        self,
        action: str,
        details: str,
        account_name: str,
        status: AuditStatus | str,
        affected_servers: Sequence[str] | None = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            action=action,
            details=details,
            account_name=account_name,
            status=AuditStatus(status),
            affected_servers=list(affected_servers) if affected_servers is not None else None,
        )
        raw = [entry.model_dump(mode="json")] + self._raw()
        self.store.set(AUDIT_KEY, raw[: self.max_entries])
        return entry

    def entries(self, limit: int | None = None) -> list[AuditEntry]:
        """Return entries newest first. Corrupt records are skipped."""
        result = []
        for item in self._raw():
            try:
                result.append(AuditEntry.model_validate(item))
            except ValidationError:
                logger.warning("Skipping malformed audit entry")
                continue
            if limit is not None and len(result) >= limit:
                break
        return result

    def clear(self) -> None:
        self.store.delete(AUDIT_KEY)

    def _raw(self) -> list[dict]:
        data = self.store.get(AUDIT_KEY)
        return data if isinstance(data, list) else []


def record_audit(
    audit: AuditLog | None,
    *,
    action: str,
    details: str,
    account_name: str,
    status: AuditStatus | str,
    affected_servers: Sequence[str] | None = None,
) -> AuditEntry | None:
    """Append an audit record without letting a failing sink break the caller."""
    if audit is None:
        return None
    try:
        return audit.add(action, details, account_name, status, affected_servers)
    except Exception as e:
        logger.warning(
            "Audit record dropped",
            extra={"audit_action": action, "error": str(e)},
        )
        return None
