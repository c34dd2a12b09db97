"""Core types and errors for the hosting panel."""

from .errors import (
    AccountError,
    ApiError,
    ErrorKind,
    GroupValidationError,
    RateLimitOrigin,
    classify_exception,
    client_rate_limited,
    validation_error,
)
from .types import (
    Account,
    AccountStatus,
    AuditEntry,
    AuditStatus,
    BalanceResponse,
    BatchResult,
    Distribution,
    Plan,
    PowerAction,
    PowerResponse,
    PurchaseRequest,
    PurchaseResponse,
    Region,
    Server,
    ServerGroup,
    StockInfo,
)

__all__ = [
    # Errors
    "ApiError",
    "ErrorKind",
    "RateLimitOrigin",
    "AccountError",
    "GroupValidationError",
    "classify_exception",
    "client_rate_limited",
    "validation_error",
    # Types
    "Server",
    "PowerAction",
    "PowerResponse",
    "BalanceResponse",
    "Plan",
    "Region",
    "StockInfo",
    "Distribution",
    "PurchaseRequest",
    "PurchaseResponse",
    "Account",
    "AccountStatus",
    "AuditEntry",
    "AuditStatus",
    "ServerGroup",
    "BatchResult",
]
