"""
Shared adapter concerns: failure conversion, logging, key loading.

Adapters are self-contained classes satisfying the ``PaymentGateway``
protocol; what they share lives here as plain functions rather than in a
base class.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import httpx

from application.dtos.payments import PaymentResult
from core.logging_config import get_logger
from domain.common.exceptions import PaymentException
from shared.codes import PaymentErrorCode


logger = get_logger(__name__)


def failure_result(provider: str, operation: str, exc: BaseException, **context: Any) -> PaymentResult:
    """Log ``exc`` and turn it into a categorized ``PaymentResult.fail``.

    - ``PaymentException``: keeps its category, message and details.
    - ``httpx.HTTPStatusError``: network error with the HTTP status.
    - other ``httpx.HTTPError``: network error.
    - anything else: business error with a generic message.
    """
    label = f"{provider} {operation} failed"
    if isinstance(exc, PaymentException):
        logger.error(
            "payment_operation_failed",
            provider=provider,
            operation=operation,
            error_type=exc.error_type,
            error=exc.message,
            **context,
        )
        data = {k: v for k, v in (exc.details or {}).items() if k != "provider" and v is not None}
        return PaymentResult.fail(f"{label}: {exc.message}", data, error_code=exc.code)

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        logger.error(
            "payment_network_failed",
            provider=provider,
            operation=operation,
            http_status=status,
            error=str(exc),
            **context,
        )
        return PaymentResult.fail(
            f"{label}: processor answered HTTP {status}",
            {"http_status": status},
            error_code=PaymentErrorCode.NETWORK_ERROR,
        )

    if isinstance(exc, httpx.HTTPError):
        logger.error(
            "payment_network_failed",
            provider=provider,
            operation=operation,
            error=str(exc),
            **context,
        )
        return PaymentResult.fail(
            f"{label}: network error ({type(exc).__name__})",
            error_code=PaymentErrorCode.NETWORK_ERROR,
        )

    logger.exception(
        "payment_operation_error",
        provider=provider,
        operation=operation,
        error=str(exc),
        **context,
    )
    return PaymentResult.fail(f"{label}: unexpected error", error_code=PaymentErrorCode.BUSINESS_ERROR)


def read_key(value: Optional[str]) -> str:
    """Key material given either as a file path or as the literal text."""
    if not value:
        return ""
    p = Path(value)
    try:
        if p.is_file():
            return p.read_text(encoding="utf-8")
    except OSError:
        # literal PEM text can exceed the OS path length limit
        pass
    return value
