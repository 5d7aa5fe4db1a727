"""
Shared codes used across layers (Domain/Application/Infrastructure).

This package is the single source of truth for failure categories and the
normalized payment status vocabulary.
"""
from shared.codes.payment_codes import (
    PROVIDER_STATUS_TO_INTERNAL,
    PaymentErrorCode,
    PaymentStatus,
    map_status,
)


__all__ = ["PaymentErrorCode", "PaymentStatus", "PROVIDER_STATUS_TO_INTERNAL", "map_status"]
