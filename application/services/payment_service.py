"""
Application service orchestrating payment use-cases.

This class depends only on the application ports and DTOs. The resolver
(a gateway factory) is provided by infrastructure and must be injected
from the composition root, keeping dependencies one-way.

Every public operation returns a plain dict: the serialized
``PaymentResult`` plus ``provider``, and ``error_code`` on failure.
Exceptions never escape.
"""
from __future__ import annotations

from typing import Any, Callable, Mapping, Optional

from application.dtos.payments import PaymentResult, QrOrder, generate_serial_no
from application.ports.payment_gateway import PaymentGateway, PaymentGatewayResolver
from core.logging_config import get_logger
from domain.common.exceptions import PaymentConfigError, PaymentException, PaymentValidationError
from shared.codes import PaymentErrorCode


logger = get_logger(__name__)

SAFE_ERROR_MESSAGE = "Payment service temporarily unavailable, please retry later"

PAYMENT_DISPLAY = {
    "wechat": {"name": "WeChat Pay", "icon": "wechat-pay-icon"},
    "wechat_v2": {"name": "WeChat Pay", "icon": "wechat-pay-icon"},
    "alipay": {"name": "Alipay", "icon": "alipay-icon"},
}


def _failure(
    provider: Optional[str],
    message: str,
    error_code: PaymentErrorCode,
    data: Optional[Mapping[str, Any]] = None,
) -> dict[str, Any]:
    response = PaymentResult.fail(message, data, error_code=error_code).to_dict()
    response["provider"] = provider
    response["error_code"] = int(error_code)
    return response


class PaymentService:
    def __init__(self, resolver: PaymentGatewayResolver) -> None:
        self.resolver = resolver

    def _run(
        self,
        event: str,
        provider: str,
        call: Callable[[PaymentGateway], PaymentResult],
        log_success: bool = True,
        **context: Any,
    ) -> dict[str, Any]:
        try:
            gateway = self.resolver.resolve(provider)
            result = call(gateway)
        except PaymentException as exc:
            logger.error(
                f"{event}_failed",
                provider=provider,
                error_type=exc.error_type,
                error=exc.message,
                **context,
            )
            return _failure(provider, exc.message, PaymentErrorCode(exc.code))
        except Exception as exc:
            # internal detail stays in the log
            logger.exception(f"{event}_error", provider=provider, error=str(exc), **context)
            return _failure(provider, SAFE_ERROR_MESSAGE, PaymentErrorCode.BUSINESS_ERROR)

        if not result.success:
            error_code = result.error_code or PaymentErrorCode.BUSINESS_ERROR
            logger.error(
                f"{event}_failed",
                provider=provider,
                error_code=int(error_code),
                error=result.message,
                **context,
            )
            return _failure(provider, result.message, error_code, result.data)

        if log_success:
            fields = {"order_no": result.order_no, **context}
            logger.info(
                f"{event}_succeeded",
                provider=provider,
                amount=str(result.amount) if result.amount is not None else None,
                status=result.status.value if result.status else None,
                **fields,
            )
        response = result.to_dict()
        response["provider"] = provider
        return response

    def create_qr_payment(self, provider: str, order_data: Mapping[str, Any]) -> dict[str, Any]:
        order_no = order_data.get("out_trade_no") or order_data.get("order_no")
        return self._run(
            "payment_create",
            provider,
            lambda gw: gw.create_qr_payment(order_data),
            order_no=order_no,
        )

    def query_payment(self, provider: str, order_no: str) -> dict[str, Any]:
        return self._run(
            "payment_query",
            provider,
            lambda gw: gw.query_order(order_no),
            log_success=False,
            order_no=order_no,
        )

    def refund_payment(self, provider: str, refund_data: Mapping[str, Any]) -> dict[str, Any]:
        return self._run(
            "payment_refund",
            provider,
            lambda gw: gw.refund(refund_data),
            order_no=refund_data.get("out_trade_no") or refund_data.get("order_no"),
            refund_amount=refund_data.get("refund_amount"),
        )

    def close_payment(self, provider: str, order_no: str) -> dict[str, Any]:
        return self._run(
            "payment_close",
            provider,
            lambda gw: gw.close_order(order_no),
            order_no=order_no,
        )

    def close_order(self, provider: str, order_no: str) -> dict[str, Any]:
        """Alias of ``close_payment``."""
        return self.close_payment(provider, order_no)

    def get_supported_payments(self) -> dict[str, Any]:
        try:
            available = self.resolver.available_providers()
        except Exception as exc:
            logger.exception("payment_methods_failed", error=str(exc))
            return {"success": False, "message": "Failed to list payment methods", "payments": []}

        payments = []
        for provider in available:
            display = PAYMENT_DISPLAY.get(provider, {})
            payments.append({
                "type": provider,
                "name": display.get("name", provider),
                "icon": display.get("icon", ""),
                "available": True,
            })
        return {"success": True, "payments": payments}

    def unified_order(self, order_data: Mapping[str, Any], preferred_provider: str = "wechat") -> dict[str, Any]:
        """Create a QR payment with the preferred provider, or the first usable one."""
        try:
            available = self.resolver.available_providers()
            if not available:
                raise PaymentConfigError("No payment provider is available, check configuration")
        except PaymentException as exc:
            logger.error("unified_order_failed", preferred_provider=preferred_provider, error=exc.message)
            return _failure(None, exc.message, PaymentErrorCode(exc.code))
        except Exception as exc:
            logger.exception("unified_order_error", preferred_provider=preferred_provider, error=str(exc))
            return _failure(None, SAFE_ERROR_MESSAGE, PaymentErrorCode.BUSINESS_ERROR)

        provider = preferred_provider if preferred_provider in available else available[0]
        if provider != preferred_provider:
            logger.info("unified_order_fallback", preferred_provider=preferred_provider, provider=provider)
        return self.create_qr_payment(provider, order_data)

    @staticmethod
    def validate_order_data(order_data: Mapping[str, Any]) -> bool:
        try:
            QrOrder.from_order_data(order_data)
        except PaymentValidationError:
            return False
        return True

    @staticmethod
    def generate_order_no(prefix: str = "PAY") -> str:
        """``<prefix><yyyyMMddHHmmss><6 random digits>``."""
        return generate_serial_no(prefix)
