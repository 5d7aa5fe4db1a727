"""
WeChat Pay V2 adapter speaking the legacy XML protocol directly over httpx.

Every call assembles the operation's fields, adds a fresh nonce, signs,
posts the XML envelope and unwraps the two-level answer
(``return_code`` envelope, then ``result_code`` business result).
"""
from __future__ import annotations

import ssl
import threading
from typing import Any, Mapping, Optional

import httpx

from application.dtos.payments import PaymentResult, QrOrder, RefundOrder, to_major_units
from core.logging_config import get_logger
from core.settings import WechatV2Settings, payment_settings
from domain.common.exceptions import (
    PaymentApiError,
    PaymentBusinessError,
    PaymentConfigError,
)
from infrastructure.external.payments.base import failure_result
from infrastructure.external.payments.validators import validate_wechat_v2_config
from infrastructure.external.payments.wechatpay_v2_protocol import (
    format_time_expire,
    from_xml,
    generate_nonce,
    sign,
    to_xml,
    verify_sign,
)
from shared.codes import PaymentStatus, map_status


logger = get_logger(__name__)

CONTENT_TYPE = "application/xml; charset=utf-8"
USER_AGENT = "WechatPayV2/1.0"

UNIFIED_ORDER = "pay/unifiedorder"
ORDER_QUERY = "pay/orderquery"
REFUND = "secapi/pay/refund"
CLOSE_ORDER = "pay/closeorder"


def _config_check(config: Mapping[str, Any]) -> dict[str, str]:
    return {
        key: "set" if config.get(key) else "not set"
        for key in ("app_id", "mch_id", "api_key", "notify_url")
    }


class WechatPayV2Client:
    provider = "wechat_v2"

    def __init__(self, config: Mapping[str, Any], *, transport: Optional[httpx.BaseTransport] = None):
        try:
            validate_wechat_v2_config(config)
        except PaymentConfigError as exc:
            logger.error(
                "wechat_v2_client_init_failed",
                provider=self.provider,
                error=exc.message,
                config_check=_config_check(config),
            )
            raise
        self._cfg = WechatV2Settings.model_validate({k: v for k, v in config.items() if v is not None})
        self._transport = transport
        self._timeout = httpx.Timeout(payment_settings.timeout)
        self._http = self._build_http()
        self._cert_http: Optional[httpx.Client] = None
        self._cert_lock = threading.Lock()

    def _build_http(self, verify: ssl.SSLContext | bool = True) -> httpx.Client:
        return httpx.Client(
            base_url=self._cfg.gateway,
            timeout=self._timeout,
            verify=verify,
            transport=self._transport,
            headers={"User-Agent": USER_AGENT},
        )

    @property
    def uses_client_certificate(self) -> bool:
        return bool(self._cfg.cert_path and self._cfg.key_path)

    def _ssl_context(self) -> ssl.SSLContext:
        ctx = ssl.create_default_context()
        ctx.load_cert_chain(certfile=self._cfg.cert_path, keyfile=self._cfg.key_path)
        return ctx

    def _refund_http(self) -> httpx.Client:
        """Client presenting the merchant certificate, when both halves are configured."""
        if not self.uses_client_certificate:
            return self._http
        with self._cert_lock:
            if self._cert_http is None:
                try:
                    verify = self._ssl_context()
                except OSError as exc:
                    raise PaymentConfigError(
                        f"Cannot load merchant certificate: {exc}", provider=self.provider
                    ) from exc
                self._cert_http = self._build_http(verify=verify)
            return self._cert_http

    def close(self) -> None:
        """Close underlying HTTP clients."""
        self._http.close()
        if self._cert_http is not None:
            self._cert_http.close()
            self._cert_http = None

    def _base_fields(self) -> dict[str, Any]:
        return {"appid": self._cfg.app_id, "mch_id": self._cfg.mch_id}

    def _call(self, path: str, fields: dict[str, Any], client: Optional[httpx.Client] = None) -> dict[str, str]:
        payload = {**fields, "nonce_str": generate_nonce()}
        payload["sign"] = sign(payload, self._cfg.api_key)

        response = (client or self._http).post(
            path,
            content=to_xml(payload).encode("utf-8"),
            headers={"Content-Type": CONTENT_TYPE},
        )
        response.raise_for_status()
        result = from_xml(response.content)

        if result.get("return_code") != "SUCCESS":
            raise PaymentApiError(
                f"Request rejected: {result.get('return_msg') or 'unknown error'}",
                provider=self.provider,
                details={"return_code": result.get("return_code"), "return_msg": result.get("return_msg")},
            )
        if result.get("sign") and not verify_sign(result, self._cfg.api_key):
            raise PaymentApiError("Response signature mismatch", provider=self.provider)
        if result.get("result_code") != "SUCCESS":
            raise PaymentBusinessError(
                f"Business failure: {result.get('err_code_des') or result.get('err_code') or 'unknown error'}",
                provider=self.provider,
                details={"err_code": result.get("err_code"), "err_code_des": result.get("err_code_des")},
            )
        return result

    def create_qr_payment(self, order_data: Mapping[str, Any]) -> PaymentResult:
        order_no = order_data.get("out_trade_no") or order_data.get("order_no")
        try:
            order = QrOrder.from_order_data(order_data)
            fields = {
                **self._base_fields(),
                "body": order.description,
                "out_trade_no": order.order_no,
                "total_fee": order.amount,
                "trade_type": "NATIVE",
                "notify_url": self._cfg.notify_url,
                "spbill_create_ip": order.client_ip or self._cfg.spbill_create_ip,
            }
            if order.expire_time is not None:
                fields["time_expire"] = format_time_expire(order.expire_time)

            result = self._call(UNIFIED_ORDER, fields)
            if not result.get("code_url"):
                raise PaymentApiError("Response carries no code_url", provider=self.provider)

            logger.info("wechat_v2_order_created", provider=self.provider, order_no=order.order_no)
            return PaymentResult.ok(
                "WeChat Pay V2 order created",
                result,
                qr_code=result["code_url"],
                order_no=order.order_no,
                trade_no=result.get("prepay_id") or None,
                amount=to_major_units(order.amount),
                status=PaymentStatus.PENDING,
            )
        except Exception as exc:
            return failure_result(self.provider, "create order", exc, order_no=order_no)

    def query_order(self, order_no: str) -> PaymentResult:
        try:
            result = self._call(ORDER_QUERY, {**self._base_fields(), "out_trade_no": order_no})
            total_fee = result.get("total_fee")
            return PaymentResult.ok(
                "Order queried",
                result,
                order_no=order_no,
                trade_no=result.get("transaction_id") or None,
                amount=to_major_units(total_fee) if total_fee else None,
                status=map_status(self.provider, result.get("trade_state")),
            )
        except Exception as exc:
            return failure_result(self.provider, "query order", exc, order_no=order_no)

    def refund(self, refund_data: Mapping[str, Any]) -> PaymentResult:
        order_no = refund_data.get("out_trade_no") or refund_data.get("order_no")
        try:
            req = RefundOrder.from_refund_data(refund_data)
            fields = {
                **self._base_fields(),
                "out_trade_no": req.order_no,
                "out_refund_no": req.refund_no,
                "total_fee": req.total_amount,
                "refund_fee": req.refund_amount,
                "refund_desc": req.reason,
            }
            result = self._call(REFUND, fields, client=self._refund_http())

            logger.info(
                "wechat_v2_refund_accepted",
                provider=self.provider,
                order_no=req.order_no,
                refund_no=req.refund_no,
                refund_amount=req.refund_amount,
            )
            return PaymentResult.ok(
                "Refund accepted",
                result,
                order_no=req.order_no,
                trade_no=result.get("refund_id") or None,
                amount=to_major_units(req.refund_amount),
                status=PaymentStatus.PROCESSING,
            )
        except Exception as exc:
            return failure_result(self.provider, "refund", exc, order_no=order_no)

    def close_order(self, order_no: str) -> PaymentResult:
        try:
            result = self._call(CLOSE_ORDER, {**self._base_fields(), "out_trade_no": order_no})
            logger.info("wechat_v2_order_closed", provider=self.provider, order_no=order_no)
            return PaymentResult.ok("Order closed", result, order_no=order_no, status=PaymentStatus.CLOSED)
        except Exception as exc:
            return failure_result(self.provider, "close order", exc, order_no=order_no)

    def verify_sign(self, fields: Mapping[str, Any]) -> bool:
        return verify_sign(fields, self._cfg.api_key)

    def parse_notification(self, body: bytes) -> dict[str, str]:
        """Decode an asynchronous payment notification and check its signature.

        Raises:
            PaymentNetworkError: body is not an XML envelope.
            PaymentApiError: signature missing or wrong.
        """
        fields = from_xml(body)
        if not self.verify_sign(fields):
            raise PaymentApiError("Invalid notification signature", provider=self.provider)
        logger.info(
            "wechat_v2_notification_parsed",
            provider=self.provider,
            order_no=fields.get("out_trade_no"),
            result_code=fields.get("result_code"),
        )
        return fields

    @staticmethod
    def notification_ack(success: bool = True, message: str = "OK") -> str:
        """Body to answer a notification with."""
        return to_xml({"return_code": "SUCCESS" if success else "FAIL", "return_msg": message})


