"""
Payment DTOs (Pydantic v2) used at application boundaries.

`PaymentResult` is the normalized outcome every adapter operation returns.
`QrOrder` and `RefundOrder` are the typed forms of the loosely shaped
order/refund mappings callers hand to the gateway.
"""
from __future__ import annotations

import secrets
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from domain.common.exceptions import PaymentValidationError
from shared.codes import PaymentErrorCode, PaymentStatus


class PaymentResult(BaseModel):
    """Outcome of one adapter call.

    When ``success`` is False only ``message``, ``data`` and ``error_code``
    are meaningful. Build instances with ``ok()`` / ``fail()``; ``success``
    itself is taken by the field.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    qr_code: Optional[str] = None
    order_no: Optional[str] = None
    trade_no: Optional[str] = None
    amount: Optional[Decimal] = None
    status: Optional[PaymentStatus] = None
    error_code: Optional[PaymentErrorCode] = None

    @classmethod
    def ok(
        cls,
        message: str = "OK",
        data: Optional[Mapping[str, Any]] = None,
        qr_code: Optional[str] = None,
        order_no: Optional[str] = None,
        trade_no: Optional[str] = None,
        amount: Optional[Decimal] = None,
        status: Optional[PaymentStatus] = None,
    ) -> "PaymentResult":
        return cls(
            success=True,
            message=message,
            data=dict(data or {}),
            qr_code=qr_code,
            order_no=order_no,
            trade_no=trade_no,
            amount=amount,
            status=status,
        )

    @classmethod
    def fail(
        cls,
        message: str = "Operation failed",
        data: Optional[Mapping[str, Any]] = None,
        error_code: PaymentErrorCode = PaymentErrorCode.BUSINESS_ERROR,
    ) -> "PaymentResult":
        return cls(success=False, message=message, data=dict(data or {}), error_code=error_code)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "data": dict(self.data),
            "qr_code": self.qr_code,
            "order_no": self.order_no,
            "trade_no": self.trade_no,
            "amount": self.amount,
            "status": self.status.value if self.status is not None else None,
        }


def to_major_units(minor: int | str | Decimal) -> Decimal:
    """Minor currency units (fen/cents) → major units with two decimals."""
    return (Decimal(str(minor)) / Decimal(100)).quantize(Decimal("0.01"))


def _minor_amount(value: Any) -> Optional[int]:
    """Parse a positive integral minor-unit amount, else None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite() or amount <= 0 or amount != amount.to_integral_value():
        return None
    return int(amount)


def _first(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def generate_serial_no(prefix: str = "PAY") -> str:
    """``<prefix><yyyyMMddHHmmss><6 random digits>``."""
    return f"{prefix}{datetime.now():%Y%m%d%H%M%S}{secrets.randbelow(1_000_000):06d}"


def _to_datetime(value: Any) -> Optional[datetime]:
    if value in (None, "", 0):
        return None
    if isinstance(value, datetime):
        return value
    timestamp: Optional[float] = None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        timestamp = value
    elif isinstance(value, str) and value.strip().isdigit():
        timestamp = int(value.strip())
    if timestamp is None:
        raise PaymentValidationError("expire_time must be a unix timestamp or datetime", field="expire_time")
    try:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
    except (OverflowError, ValueError, OSError) as exc:
        raise PaymentValidationError(
            f"expire_time out of range: {value}", field="expire_time"
        ) from exc


class QrOrder(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_no: str
    amount: int = Field(gt=0)  # minor units
    description: str
    expire_time: Optional[datetime] = None
    client_ip: Optional[str] = None

    @classmethod
    def from_order_data(cls, data: Mapping[str, Any]) -> "QrOrder":
        """Build from a caller mapping, listing every missing field on failure."""
        order_no = _first(data, "out_trade_no", "order_no")
        amount = _minor_amount(data.get("amount"))
        description = _first(data, "description", "subject")

        missing = []
        if not order_no:
            missing.append("out_trade_no/order_no (merchant order number)")
        if amount is None:
            missing.append("amount (positive integer, minor units)")
        if not description:
            missing.append("description/subject (item description)")
        if missing:
            raise PaymentValidationError(
                "Incomplete order data, missing fields: " + ", ".join(missing),
                details={"missing": missing},
            )

        return cls(
            order_no=str(order_no),
            amount=amount,
            description=str(description),
            expire_time=_to_datetime(data.get("expire_time")),
            client_ip=_first(data, "client_ip"),
        )


class RefundOrder(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_no: str
    refund_no: str
    refund_amount: int = Field(gt=0)  # minor units
    total_amount: int = Field(gt=0)
    reason: str = "Merchant refund"

    @classmethod
    def from_refund_data(cls, data: Mapping[str, Any]) -> "RefundOrder":
        order_no = _first(data, "out_trade_no", "order_no")
        refund_amount = _minor_amount(data.get("refund_amount"))
        raw_total = data.get("total_amount")
        total_amount = _minor_amount(raw_total) if raw_total not in (None, "") else refund_amount

        missing = []
        if not order_no:
            missing.append("out_trade_no/order_no (merchant order number)")
        if refund_amount is None:
            missing.append("refund_amount (positive integer, minor units)")
        if total_amount is None:
            missing.append("total_amount (positive integer, minor units)")
        if missing:
            raise PaymentValidationError(
                "Incomplete refund data, missing fields: " + ", ".join(missing),
                details={"missing": missing},
            )
        if refund_amount > total_amount:
            raise PaymentValidationError(
                f"Refund amount {refund_amount} exceeds order total {total_amount}",
                field="refund_amount",
            )

        # a fresh number per call; a reused one is treated as the same refund
        refund_no = _first(data, "out_refund_no", "refund_no") or generate_serial_no("RF")

        return cls(
            order_no=str(order_no),
            refund_no=str(refund_no),
            refund_amount=refund_amount,
            total_amount=total_amount,
            reason=str(_first(data, "reason") or "Merchant refund"),
        )
