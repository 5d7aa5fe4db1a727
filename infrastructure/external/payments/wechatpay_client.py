"""
WeChat Pay v3 adapter using the community `wechatpayv3` SDK.

Features used:
- Request signing with merchant private key (v3)
- Platform certificate directory for response verification
- NATIVE (QR) flow, query, refund, close
"""
from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping

from wechatpayv3 import WeChatPay, WeChatPayType

from application.dtos.payments import PaymentResult, QrOrder, RefundOrder, to_major_units
from core.logging_config import get_logger
from core.settings import WechatSettings, payment_settings
from domain.common.exceptions import PaymentApiError, PaymentConfigError
from infrastructure.external.payments.base import failure_result, read_key
from infrastructure.external.payments.validators import validate_wechat_config
from infrastructure.external.payments.wechatpay_v2_protocol import CST
from shared.codes import PaymentStatus, map_status


logger = get_logger(__name__)

CURRENCY = "CNY"


class WechatPayClient:
    provider = "wechat"

    def __init__(self, config: Mapping[str, Any]):
        validate_wechat_config(config)
        self._cfg = WechatSettings.model_validate({k: v for k, v in config.items() if v is not None})
        try:
            self._wx = WeChatPay(
                wechatpay_type=WeChatPayType.NATIVE,
                mchid=self._cfg.mch_id,
                private_key=read_key(self._cfg.private_key_path),
                cert_serial_no=self._cfg.mch_serial_number,
                appid=self._cfg.app_id,
                apiv3_key=self._cfg.api_v3_key,
                notify_url=self._cfg.notify_url,
                cert_dir=str(Path(self._cfg.wechatpay_cert_path).parent),
                logger=None,
                timeout=(payment_settings.timeout, payment_settings.timeout),
            )
        except Exception as exc:
            logger.error(
                "wechat_client_init_failed",
                provider=self.provider,
                error=str(exc),
                private_key_exists=Path(self._cfg.private_key_path).exists(),
                wechatpay_cert_exists=Path(self._cfg.wechatpay_cert_path).exists(),
            )
            raise PaymentConfigError(f"WeChat Pay client init failed: {exc}", provider=self.provider) from exc

    @staticmethod
    def _rfc3339(moment: datetime) -> str:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=CST)
        return moment.astimezone(CST).isoformat(timespec="seconds")

    def _unwrap(self, code: int, message: Any) -> dict[str, Any]:
        """SDK returns (http_status, json_text); 204 carries no body."""
        if isinstance(message, (str, bytes)):
            data = json.loads(message) if message else {}
        else:
            data = dict(message or {})
        if not 200 <= int(code) < 300:
            raise PaymentApiError(
                str(data.get("message") or f"HTTP {code}"),
                provider=self.provider,
                details={"http_status": code, "provider_code": data.get("code")},
            )
        return data

    def create_qr_payment(self, order_data: Mapping[str, Any]) -> PaymentResult:
        order_no = order_data.get("out_trade_no") or order_data.get("order_no")
        try:
            order = QrOrder.from_order_data(order_data)
            kwargs: dict[str, Any] = {
                "description": order.description,
                "out_trade_no": order.order_no,
                "amount": {"total": order.amount, "currency": CURRENCY},
                "pay_type": WeChatPayType.NATIVE,
                "notify_url": self._cfg.notify_url,
            }
            if order.expire_time is not None:
                kwargs["time_expire"] = self._rfc3339(order.expire_time)

            code, message = self._wx.pay(**kwargs)
            data = self._unwrap(code, message)
            if not data.get("code_url"):
                raise PaymentApiError("Response carries no code_url", provider=self.provider)

            logger.info("wechat_order_created", provider=self.provider, order_no=order.order_no)
            return PaymentResult.ok(
                "WeChat Pay order created",
                data,
                qr_code=data["code_url"],
                order_no=order.order_no,
                amount=to_major_units(order.amount),
                status=PaymentStatus.PENDING,
            )
        except Exception as exc:
            return failure_result(self.provider, "create order", exc, order_no=order_no)

    def query_order(self, order_no: str) -> PaymentResult:
        try:
            code, message = self._wx.query(out_trade_no=order_no)
            data = self._unwrap(code, message)
            total = (data.get("amount") or {}).get("total")
            return PaymentResult.ok(
                "Order queried",
                data,
                order_no=order_no,
                trade_no=data.get("transaction_id") or None,
                amount=to_major_units(total) if total is not None else None,
                status=map_status(self.provider, data.get("trade_state")),
            )
        except Exception as exc:
            return failure_result(self.provider, "query order", exc, order_no=order_no)

    def refund(self, refund_data: Mapping[str, Any]) -> PaymentResult:
        order_no = refund_data.get("out_trade_no") or refund_data.get("order_no")
        try:
            req = RefundOrder.from_refund_data(refund_data)
            code, message = self._wx.refund(
                out_refund_no=req.refund_no,
                amount={"refund": req.refund_amount, "total": req.total_amount, "currency": CURRENCY},
                out_trade_no=req.order_no,
                reason=req.reason,
            )
            data = self._unwrap(code, message)

            logger.info(
                "wechat_refund_accepted",
                provider=self.provider,
                order_no=req.order_no,
                refund_no=req.refund_no,
                refund_amount=req.refund_amount,
            )
            status = map_status("wechat_refund", data.get("status"))
            return PaymentResult.ok(
                "Refund accepted",
                data,
                order_no=req.order_no,
                trade_no=data.get("refund_id") or None,
                amount=to_major_units(req.refund_amount),
                status=PaymentStatus.PROCESSING if status is PaymentStatus.UNKNOWN else status,
            )
        except Exception as exc:
            return failure_result(self.provider, "refund", exc, order_no=order_no)

    def close_order(self, order_no: str) -> PaymentResult:
        try:
            code, message = self._wx.close(out_trade_no=order_no)
            data = self._unwrap(code, message)
            logger.info("wechat_order_closed", provider=self.provider, order_no=order_no)
            return PaymentResult.ok("Order closed", data, order_no=order_no, status=PaymentStatus.CLOSED)
        except Exception as exc:
            return failure_result(self.provider, "close order", exc, order_no=order_no)

    def close(self) -> None:
        """The SDK keeps no pooled connections of its own."""
