"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import Enum, IntEnum


class PaymentErrorCode(IntEnum):
    """Failure categories surfaced to callers (closed set)."""

    CONFIG_ERROR = 1001
    NETWORK_ERROR = 1002
    API_ERROR = 1003
    VALIDATION_ERROR = 1004
    BUSINESS_ERROR = 1005


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CLOSED = "closed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"
    PAYING = "paying"
    FAILED = "failed"
    FINISHED = "finished"
    # refund accepted by the processor, not yet settled
    PROCESSING = "processing"
    UNKNOWN = "unknown"


_WECHAT_TRADE_STATE = {
    "SUCCESS": PaymentStatus.PAID,
    "REFUND": PaymentStatus.REFUNDED,
    "NOTPAY": PaymentStatus.PENDING,
    "CLOSED": PaymentStatus.CLOSED,
    "REVOKED": PaymentStatus.CANCELLED,
    "USERPAYING": PaymentStatus.PAYING,
    "PAYERROR": PaymentStatus.FAILED,
}


# Provider→internal status mapping
PROVIDER_STATUS_TO_INTERNAL: dict[str, dict[str, PaymentStatus]] = {
    "wechat": dict(_WECHAT_TRADE_STATE),
    "wechat_v2": dict(_WECHAT_TRADE_STATE),
    "alipay": {
        # Per trade_status
        "WAIT_BUYER_PAY": PaymentStatus.PENDING,
        "TRADE_CLOSED": PaymentStatus.CLOSED,
        "TRADE_SUCCESS": PaymentStatus.PAID,
        "TRADE_FINISHED": PaymentStatus.FINISHED,
    },
    # WeChat v3 refund `status`
    "wechat_refund": {
        "SUCCESS": PaymentStatus.REFUNDED,
        "PROCESSING": PaymentStatus.PROCESSING,
        "CLOSED": PaymentStatus.CLOSED,
        "ABNORMAL": PaymentStatus.FAILED,
    },
}


def map_status(provider: str, provider_status: object) -> PaymentStatus:
    """Map a processor state to `PaymentStatus`; anything unrecognised is UNKNOWN."""
    mapping = PROVIDER_STATUS_TO_INTERNAL.get(provider, {})
    if not isinstance(provider_status, str):
        return PaymentStatus.UNKNOWN
    return mapping.get(provider_status, PaymentStatus.UNKNOWN)
