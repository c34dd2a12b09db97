"""
Batch power actions

Power actions across many servers are issued concurrently in small batches.
One server failing never aborts the others: every outcome is tallied
individually into a BatchResult.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Iterable

from rdpanel.config.constants import BATCH_ACTION_SIZE
from rdpanel.core.errors import classify_exception, validation_error
from rdpanel.core.types import AuditStatus, BatchResult, PowerAction, ServerGroup
from rdpanel.observability.logger import get_logger, log_context
from rdpanel.storage.audit import AuditLog, record_audit

if TYPE_CHECKING:
    from rdpanel.common.client import HostingClient

logger = get_logger(__name__)

SYSTEM_ACCOUNT = "System"


def _coerce_action(action: PowerAction | str) -> PowerAction:
    try:
        return PowerAction(action)
    except ValueError:
        raise validation_error(
            f"Invalid power action: {action!r}",
            field="action",
            value=str(action),
            allowed=[a.value for a in PowerAction],
        ) from None


async def batch_power_action(
    client: HostingClient,
    server_ids: Iterable[str],
    action: PowerAction | str,
    batch_size: int = BATCH_ACTION_SIZE,
) -> BatchResult:
    """
    Run a power action on many servers.

    Args:
        client: Client of the account owning the servers
        server_ids: Servers to act on (duplicates are sent once)
        action: reset, start or stop
        batch_size: Concurrent requests per batch

    Returns:
        Per-server outcome. Failures hold the classified error.

    Raises:
        ApiError: VALIDATION_ERROR for an invalid action, before any request
    """
    action = _coerce_action(action)
    ids = list(dict.fromkeys(server_ids))
    result = BatchResult(action=action)

    with log_context(action=action.value):
        for i in range(0, len(ids), batch_size):
            batch = ids[i : i + batch_size]
            batch_start = time.monotonic()

            outcomes = await asyncio.gather(
                *(client.power_action(server_id, action) for server_id in batch),
                return_exceptions=True,
            )

            for server_id, outcome in zip(batch, outcomes):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                if isinstance(outcome, BaseException):
                    result.failed[server_id] = classify_exception(outcome)
                else:
                    result.succeeded.append(server_id)

            logger.info(
                "Batch completed",
                extra={
                    "batch_index": i // batch_size,
                    "batch_size": len(batch),
                    "duration_ms": round((time.monotonic() - batch_start) * 1000, 2),
                },
            )

    if result.failed:
        logger.warning(
            result.summary(),
            extra={"failed": {sid: err.code for sid, err in result.failed.items()}},
        )
    return result


async def run_group_action(
    client: HostingClient,
    group: ServerGroup,
    action: PowerAction | str,
    audit: AuditLog | None = None,
) -> BatchResult:
    """Run a power action on every server of a group and audit the outcome."""
    action = _coerce_action(action)
    if not group.server_ids:
        return BatchResult(action=action)

    result = await batch_power_action(client, group.server_ids, action)

    record_audit(
        audit,
        action=f"GROUP_{action.value.upper()}_SERVERS",
        details=(
            f'{action.value} command executed on group "{group.name}". '
            f"Success: {len(result.succeeded)}, Failed: {len(result.failed)}"
        ),
        account_name=SYSTEM_ACCOUNT,
        status=AuditStatus.SUCCESS if result.all_succeeded else AuditStatus.FAILURE,
        affected_servers=list(group.server_ids),
    )
    return result


async def stop_running_servers(
    client: HostingClient,
    audit: AuditLog | None = None,
    account_name: str = SYSTEM_ACCOUNT,
) -> BatchResult:
    """Stop every server of the account that is currently running."""
    servers = await client.list_servers()
    running = [s.id for s in servers if s.is_running]
    if not running:
        return BatchResult(action=PowerAction.STOP)

    result = await batch_power_action(client, running, PowerAction.STOP)

    record_audit(
        audit,
        action="STOP_ALL_SERVERS",
        details=f"Stopped {len(result.succeeded)} servers, {len(result.failed)} failed",
        account_name=account_name,
        status=AuditStatus.SUCCESS if result.all_succeeded else AuditStatus.FAILURE,
        affected_servers=running,
    )
    return result
