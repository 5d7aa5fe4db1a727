"""
Alipay adapter using the official alipay-sdk-python-all.

Implements face-to-face precreate (QR), query, refund and close.
"""
from __future__ import annotations

import json
import math
import time
from decimal import Decimal
from typing import Any, Mapping

from alipay.aop.api.AlipayClientConfig import AlipayClientConfig
from alipay.aop.api.DefaultAlipayClient import DefaultAlipayClient
from alipay.aop.api.domain.AlipayTradeCloseModel import AlipayTradeCloseModel
from alipay.aop.api.domain.AlipayTradePrecreateModel import AlipayTradePrecreateModel
from alipay.aop.api.domain.AlipayTradeQueryModel import AlipayTradeQueryModel
from alipay.aop.api.domain.AlipayTradeRefundModel import AlipayTradeRefundModel
from alipay.aop.api.request.AlipayTradeCloseRequest import AlipayTradeCloseRequest
from alipay.aop.api.request.AlipayTradePrecreateRequest import AlipayTradePrecreateRequest
from alipay.aop.api.request.AlipayTradeQueryRequest import AlipayTradeQueryRequest
from alipay.aop.api.request.AlipayTradeRefundRequest import AlipayTradeRefundRequest
from alipay.aop.api.response.AlipayTradeCloseResponse import AlipayTradeCloseResponse
from alipay.aop.api.response.AlipayTradePrecreateResponse import AlipayTradePrecreateResponse
from alipay.aop.api.response.AlipayTradeQueryResponse import AlipayTradeQueryResponse
from alipay.aop.api.response.AlipayTradeRefundResponse import AlipayTradeRefundResponse

from application.dtos.payments import PaymentResult, QrOrder, RefundOrder, to_major_units
from core.logging_config import get_logger
from core.settings import AlipaySettings, payment_settings
from domain.common.exceptions import PaymentApiError, PaymentConfigError
from infrastructure.external.payments.base import failure_result, read_key
from infrastructure.external.payments.validators import validate_alipay_config
from shared.codes import PaymentStatus, map_status


logger = get_logger(__name__)

GATEWAY = "https://openapi.alipay.com/gateway.do"
SANDBOX_GATEWAY = "https://openapi.alipaydev.com/gateway.do"
SUCCESS_CODE = "10000"


class AlipayClient:
    provider = "alipay"

    def __init__(self, config: Mapping[str, Any]):
        validate_alipay_config(config)
        self._cfg = AlipaySettings.model_validate({k: v for k, v in config.items() if v is not None})
        try:
            self._client = self._build_client()
        except Exception as exc:
            logger.error(
                "alipay_client_init_failed",
                provider=self.provider,
                error=str(exc),
                config_keys=sorted(config.keys()),
            )
            raise PaymentConfigError(f"Alipay SDK init failed: {exc}", provider=self.provider) from exc

    def _build_client(self):
        # literal key text wins over the file form
        private_key = self._cfg.private_key or read_key(self._cfg.private_key_path)
        public_key = self._cfg.alipay_public_key or read_key(self._cfg.alipay_public_key_path)
        if not private_key:
            raise ValueError("no usable app private key")
        if not public_key:
            raise ValueError("no usable Alipay public key")

        alipay_client_config = AlipayClientConfig()
        alipay_client_config.server_url = SANDBOX_GATEWAY if self._cfg.sandbox else GATEWAY
        alipay_client_config.app_id = self._cfg.app_id
        alipay_client_config.app_private_key = private_key
        alipay_client_config.alipay_public_key = public_key
        alipay_client_config.sign_type = self._cfg.sign_type
        alipay_client_config.timeout = int(payment_settings.timeout)
        return DefaultAlipayClient(alipay_client_config=alipay_client_config)

    @staticmethod
    def _to_yuan(minor: int) -> str:
        # Alipay uses yuan units as string, with 2 decimals
        return f"{to_major_units(minor):.2f}"

    @staticmethod
    def _timeout_express(expire_at: float) -> str:
        minutes = max(1, math.ceil((expire_at - time.time()) / 60))
        return f"{minutes}m"

    def _execute(self, request, response):
        content = self._client.execute(request)
        response.parse_response_content(content)
        if str(response.code) != SUCCESS_CODE or not response.is_success():
            raise PaymentApiError(
                str(response.sub_msg or response.msg or "unknown error"),
                provider=self.provider,
                details={"code": response.code, "sub_code": response.sub_code},
            )
        return json.loads(content) if isinstance(content, (str, bytes)) and content else {}

    def create_qr_payment(self, order_data: Mapping[str, Any]) -> PaymentResult:
        order_no = order_data.get("out_trade_no") or order_data.get("order_no")
        try:
            order = QrOrder.from_order_data(order_data)
            model = AlipayTradePrecreateModel()
            model.out_trade_no = order.order_no
            model.total_amount = self._to_yuan(order.amount)
            model.subject = order.description
            if order.expire_time is not None:
                model.timeout_express = self._timeout_express(order.expire_time.timestamp())
            request = AlipayTradePrecreateRequest(biz_model=model)
            request.notify_url = self._cfg.notify_url

            response = AlipayTradePrecreateResponse()
            data = self._execute(request, response)
            if not response.qr_code:
                raise PaymentApiError("Response carries no qr_code", provider=self.provider)

            logger.info("alipay_order_created", provider=self.provider, order_no=order.order_no)
            return PaymentResult.ok(
                "Alipay order created",
                data,
                qr_code=response.qr_code,
                order_no=order.order_no,
                amount=to_major_units(order.amount),
                status=PaymentStatus.PENDING,
            )
        except Exception as exc:
            return failure_result(self.provider, "create order", exc, order_no=order_no)

    def query_order(self, order_no: str) -> PaymentResult:
        try:
            model = AlipayTradeQueryModel()
            model.out_trade_no = order_no
            response = AlipayTradeQueryResponse()
            data = self._execute(AlipayTradeQueryRequest(biz_model=model), response)
            total = response.total_amount
            return PaymentResult.ok(
                "Order queried",
                data,
                order_no=order_no,
                trade_no=response.trade_no or None,
                amount=Decimal(str(total)).quantize(Decimal("0.01")) if total else None,
                status=map_status(self.provider, response.trade_status),
            )
        except Exception as exc:
            return failure_result(self.provider, "query order", exc, order_no=order_no)

    def refund(self, refund_data: Mapping[str, Any]) -> PaymentResult:
        order_no = refund_data.get("out_trade_no") or refund_data.get("order_no")
        try:
            req = RefundOrder.from_refund_data(refund_data)
            model = AlipayTradeRefundModel()
            model.out_trade_no = req.order_no
            model.refund_amount = self._to_yuan(req.refund_amount)
            model.refund_reason = req.reason
            # partial refunds need a request number per refund
            model.out_request_no = req.refund_no
            response = AlipayTradeRefundResponse()
            data = self._execute(AlipayTradeRefundRequest(biz_model=model), response)

            logger.info(
                "alipay_refund_accepted",
                provider=self.provider,
                order_no=req.order_no,
                refund_no=req.refund_no,
                refund_amount=req.refund_amount,
            )
            return PaymentResult.ok(
                "Refund accepted",
                data,
                order_no=req.order_no,
                trade_no=response.trade_no or None,
                amount=to_major_units(req.refund_amount),
                status=PaymentStatus.REFUNDED,
            )
        except Exception as exc:
            return failure_result(self.provider, "refund", exc, order_no=order_no)

    def close_order(self, order_no: str) -> PaymentResult:
        try:
            model = AlipayTradeCloseModel()
            model.out_trade_no = order_no
            response = AlipayTradeCloseResponse()
            data = self._execute(AlipayTradeCloseRequest(biz_model=model), response)
            logger.info("alipay_order_closed", provider=self.provider, order_no=order_no)
            return PaymentResult.ok("Order closed", data, order_no=order_no, status=PaymentStatus.CLOSED)
        except Exception as exc:
            return failure_result(self.provider, "close order", exc, order_no=order_no)

    def close(self) -> None:
        """The SDK opens a connection per request."""
