"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on these Protocols; infrastructure implements adapters
and the factory that resolves them.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from application.dtos.payments import PaymentResult


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for scan-to-pay processors.

    Implementations are synchronous, catch their own failures and report
    them as ``PaymentResult.fail(...)``.
    """

    provider: str

    def create_qr_payment(self, order_data: Mapping[str, Any]) -> PaymentResult: ...

    def query_order(self, order_no: str) -> PaymentResult: ...

    def refund(self, refund_data: Mapping[str, Any]) -> PaymentResult: ...

    def close_order(self, order_no: str) -> PaymentResult: ...


class PaymentGatewayResolver(Protocol):
    """Resolves provider names to ready gateways."""

    def resolve(self, provider: str, config: Optional[Mapping[str, Any]] = None) -> PaymentGateway: ...

    def available_providers(self) -> list[str]: ...

    def supported_providers(self) -> list[str]: ...
