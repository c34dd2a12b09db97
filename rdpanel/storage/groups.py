"""Named server groups.

A server belongs to at most one group. Every change is written to the audit
log under the ``System`` account.
"""

from __future__ import annotations

from typing import Any, Iterable

from pydantic import ValidationError

from rdpanel.core.errors import GroupValidationError
from rdpanel.core.types import AuditStatus, ServerGroup, utcnow
from rdpanel.observability.logger import get_logger
from rdpanel.storage.audit import AuditLog, record_audit
from rdpanel.storage.kv import KeyValueStore

logger = get_logger(__name__)

GROUPS_KEY = "server-groups"
SCHEMA_VERSION = 2
SYSTEM_ACCOUNT = "System"
DEFAULT_COLOR = "#3B82F6"


class GroupsStore:
    """Persisted server groups."""

    def __init__(self, store: KeyValueStore, audit: AuditLog | None = None):
        self.store = store
        self.audit = audit
        self._groups: list[ServerGroup] = self._load()

    # ==================== Lookups ====================

    def list_groups(self) -> list[ServerGroup]:
        return list(self._groups)

    def get_group_by_id(self, group_id: str) -> ServerGroup | None:
        return next((g for g in self._groups if g.id == group_id), None)

    def get_group_by_name(self, name: str) -> ServerGroup | None:
        folded = name.strip().casefold()
        return next((g for g in self._groups if g.name.casefold() == folded), None)

    def get_groups_for_server(self, server_id: str) -> list[ServerGroup]:
        return [g for g in self._groups if server_id in g.server_ids]

    def validate_group_name(self, name: str, exclude_group_id: str | None = None) -> bool:
        """True when no other group already uses this name (case-insensitive)."""
        existing = self.get_group_by_name(name)
        return existing is None or existing.id == exclude_group_id

    # ==================== Mutations ====================

    def add_group(
        self, name: str, description: str = "", color: str = DEFAULT_COLOR
    ) -> ServerGroup:
        name = name.strip()
        if not self.validate_group_name(name):
            raise GroupValidationError(
                f'Group name "{name}" already exists', code="DUPLICATE_NAME"
            )

        group = self._build(name=name, description=description, color=color)
        self._groups.append(group)
        self._save()
        self._audit("GROUP_CREATE", f'Created group "{group.name}"')
        return group

    def remove_group(self, group_id: str) -> None:
        group = self._require(group_id)
        self._groups = [g for g in self._groups if g.id != group_id]
        self._save()
        self._audit("GROUP_DELETE", f'Deleted group "{group.name}"')

    def update_group(
        self,
        group_id: str,
        name: str | None = None,
        description: str | None = None,
        color: str | None = None,
    ) -> ServerGroup:
        group = self._require(group_id)

        changes: dict[str, Any] = {}
        if name is not None:
            name = name.strip()
            if not self.validate_group_name(name, exclude_group_id=group_id):
                raise GroupValidationError(
                    f'Group name "{name}" already exists', code="DUPLICATE_NAME"
                )
            changes["name"] = name
        if description is not None:
            changes["description"] = description
        if color is not None:
            changes["color"] = color

        updated = self._build(**{**group.model_dump(), **changes, "updated_at": utcnow()})
        self._replace(updated)
        self._audit("GROUP_UPDATE", f'Updated group "{group.name}"')
        return updated

    def add_servers_to_group(self, group_id: str, server_ids: Iterable[str]) -> ServerGroup:
        group = self._require(group_id)
        server_ids = list(server_ids)

        for server_id in server_ids:
            for other in self.get_groups_for_server(server_id):
                if other.id != group_id:
                    raise GroupValidationError(
                        f'Server {server_id} is already in group "{other.name}"',
                        code="SERVER_ALREADY_GROUPED",
                    )

        merged = list(dict.fromkeys([*group.server_ids, *server_ids]))
        updated = group.model_copy(update={"server_ids": merged, "updated_at": utcnow()})
        self._replace(updated)
        self._audit(
            "GROUP_ADD_SERVERS",
            f'Added {len(server_ids)} servers to group "{group.name}"',
            affected_servers=server_ids,
        )
        return updated

    def remove_servers_from_group(
        self, group_id: str, server_ids: Iterable[str]
    ) -> ServerGroup:
        group = self._require(group_id)
        server_ids = list(server_ids)

        remaining = [sid for sid in group.server_ids if sid not in set(server_ids)]
        updated = group.model_copy(update={"server_ids": remaining, "updated_at": utcnow()})
        self._replace(updated)
        self._audit(
            "GROUP_REMOVE_SERVERS",
            f'Removed {len(server_ids)} servers from group "{group.name}"',
            affected_servers=server_ids,
        )
        return updated

    # ==================== Internals ====================

    def _require(self, group_id: str) -> ServerGroup:
        group = self.get_group_by_id(group_id)
        if group is None:
            raise GroupValidationError("Group not found", code="INVALID_GROUP", status=404)
        return group

    @staticmethod
    def _build(**fields: Any) -> ServerGroup:
        try:
            return ServerGroup(**fields)
        except ValidationError as e:
            err = e.errors()[0]
            field = ".".join(str(p) for p in err["loc"])
            raise GroupValidationError(f"{field}: {err['msg']}", code="INVALID_GROUP") from e

    def _replace(self, group: ServerGroup) -> None:
        self._groups = [group if g.id == group.id else g for g in self._groups]
        self._save()

    def _audit(self, action: str, details: str, affected_servers: list[str] | None = None) -> None:
        record_audit(
            self.audit,
            action=action,
            details=details,
            account_name=SYSTEM_ACCOUNT,
            status=AuditStatus.SUCCESS,
            affected_servers=affected_servers,
        )

    def _load(self) -> list[ServerGroup]:
        data = self.store.get(GROUPS_KEY)
        if isinstance(data, list):
            data = {"version": 1, "groups": data}
        if not isinstance(data, dict):
            return []

        groups = []
        for raw in data.get("groups", []):
            if isinstance(raw, dict) and "serverIds" in raw:
                # Version 1 stored camelCase keys
                raw = {
                    "id": raw.get("id"),
                    "name": raw.get("name"),
                    "description": raw.get("description", ""),
                    "color": raw.get("color", DEFAULT_COLOR),
                    "server_ids": raw.get("serverIds", []),
                    "created_at": raw.get("createdAt"),
                    "updated_at": raw.get("updatedAt"),
                }
                raw = {k: v for k, v in raw.items() if v is not None}
            try:
                groups.append(ServerGroup.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping malformed group record")
        return groups

    def _save(self) -> None:
        self.store.set(
            GROUPS_KEY,
            {
                "version": SCHEMA_VERSION,
                "groups": [g.model_dump(mode="json") for g in self._groups],
            },
        )
