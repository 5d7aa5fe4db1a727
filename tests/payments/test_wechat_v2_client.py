from decimal import Decimal

import httpx
import pytest

from domain.common.exceptions import PaymentApiError, PaymentConfigError
from infrastructure.external.payments.wechatpay_v2_client import WechatPayV2Client
from infrastructure.external.payments.wechatpay_v2_protocol import from_xml, sign, to_xml, verify_sign
from shared.codes import PaymentErrorCode, PaymentStatus

V2_API_KEY = "0123456789abcdef0123456789abcdef"


def _signed_xml(fields, key=V2_API_KEY):
    body = dict(fields)
    body["sign"] = sign(body, key)
    return to_xml(body)


class _Gateway:
    """Records requests and answers with a canned, signed envelope."""

    def __init__(self, answer=None, status_code=200, raw=None):
        self.answer = answer or {}
        self.status_code = status_code
        self.raw = raw
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        fields = from_xml(request.content)
        self.requests.append((request, fields))
        if self.raw is not None:
            return httpx.Response(self.status_code, content=self.raw)
        body = {"return_code": "SUCCESS", "result_code": "SUCCESS", **self.answer}
        return httpx.Response(self.status_code, content=_signed_xml(body).encode("utf-8"))


def _client(config, gateway):
    return WechatPayV2Client(config, transport=httpx.MockTransport(gateway))


def test_create_qr_payment_success(v2_config):
    gateway = _Gateway({"code_url": "weixin://wxpay/bizpayurl?pr=abc", "prepay_id": "wx201410272009395522657a690389285100"})
    client = _client(v2_config, gateway)

    result = client.create_qr_payment({
        "out_trade_no": "PAY20240101000001",
        "amount": 100,
        "description": "Test item",
    })

    assert result.success
    assert result.qr_code == "weixin://wxpay/bizpayurl?pr=abc"
    assert result.order_no == "PAY20240101000001"
    assert result.amount == Decimal("1.00")
    assert result.status is PaymentStatus.PENDING
    assert result.trade_no == "wx201410272009395522657a690389285100"

    request, sent = gateway.requests[0]
    assert request.url.path == "/pay/unifiedorder"
    assert request.headers["content-type"].startswith("application/xml")
    assert sent["trade_type"] == "NATIVE"
    assert sent["total_fee"] == "100"
    assert sent["body"] == "Test item"
    assert sent["appid"] == v2_config["app_id"]
    assert sent["mch_id"] == v2_config["mch_id"]
    assert sent["notify_url"] == v2_config["notify_url"]
    assert len(sent["nonce_str"]) == 32
    assert "time_expire" not in sent
    assert verify_sign(sent, V2_API_KEY)


def test_create_qr_payment_sends_time_expire_in_cst(v2_config):
    gateway = _Gateway({"code_url": "weixin://wxpay/bizpayurl?pr=abc"})
    client = _client(v2_config, gateway)

    result = client.create_qr_payment({
        "order_no": "PAY1",
        "amount": "250",
        "subject": "Coffee",
        "expire_time": 1704081600,
    })

    assert result.success
    sent = gateway.requests[0][1]
    assert sent["time_expire"] == "20240101120000"
    assert sent["body"] == "Coffee"


def test_create_qr_payment_lists_missing_fields(v2_config):
    gateway = _Gateway()
    client = _client(v2_config, gateway)

    result = client.create_qr_payment({"amount": 100})

    assert not result.success
    assert result.error_code == PaymentErrorCode.VALIDATION_ERROR
    assert "out_trade_no" in result.message
    assert "description" in result.message
    assert gateway.requests == []


def test_create_qr_payment_without_code_url_is_api_error(v2_config):
    client = _client(v2_config, _Gateway({"prepay_id": "p1"}))
    result = client.create_qr_payment({"out_trade_no": "PAY1", "amount": 1, "description": "x"})
    assert not result.success
    assert result.error_code == PaymentErrorCode.API_ERROR


def test_envelope_failure_is_api_error(v2_config):
    raw = to_xml({"return_code": "FAIL", "return_msg": "appid and mch_id do not match"}).encode("utf-8")
    client = _client(v2_config, _Gateway(raw=raw))

    result = client.query_order("PAY1")

    assert not result.success
    assert result.error_code == PaymentErrorCode.API_ERROR
    assert "appid and mch_id do not match" in result.message


def test_business_failure_is_business_error(v2_config):
    gateway = _Gateway({"result_code": "FAIL", "err_code": "ORDERPAID", "err_code_des": "order already paid"})
    client = _client(v2_config, gateway)

    result = client.close_order("PAY1")

    assert not result.success
    assert result.error_code == PaymentErrorCode.BUSINESS_ERROR
    assert "order already paid" in result.message
    assert result.data["err_code"] == "ORDERPAID"


def test_bad_response_signature_is_api_error(v2_config):
    raw = _signed_xml(
        {"return_code": "SUCCESS", "result_code": "SUCCESS", "trade_state": "SUCCESS"},
        key="ffffffffffffffffffffffffffffffff",
    ).encode("utf-8")
    client = _client(v2_config, _Gateway(raw=raw))

    result = client.query_order("PAY1")

    assert result.error_code == PaymentErrorCode.API_ERROR
    assert "signature" in result.message


def test_http_error_status_is_network_error(v2_config):
    client = _client(v2_config, _Gateway(status_code=500, raw=b"oops"))
    result = client.query_order("PAY1")
    assert not result.success
    assert result.error_code == PaymentErrorCode.NETWORK_ERROR
    assert result.data == {"http_status": 500}


def test_transport_error_is_network_error(v2_config):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = WechatPayV2Client(v2_config, transport=httpx.MockTransport(handler))
    result = client.close_order("PAY1")
    assert result.error_code == PaymentErrorCode.NETWORK_ERROR


def test_malformed_body_is_network_error(v2_config):
    client = _client(v2_config, _Gateway(raw=b"<html>bad gateway"))
    result = client.query_order("PAY1")
    assert result.error_code == PaymentErrorCode.NETWORK_ERROR


@pytest.mark.parametrize(
    "state,expected",
    [
        ("SUCCESS", PaymentStatus.PAID),
        ("NOTPAY", PaymentStatus.PENDING),
        ("REFUND", PaymentStatus.REFUNDED),
        ("USERPAYING", PaymentStatus.PAYING),
        ("SOMETHING_NEW", PaymentStatus.UNKNOWN),
    ],
)
def test_query_order_maps_trade_state(v2_config, state, expected):
    gateway = _Gateway({"trade_state": state, "transaction_id": "4200000001", "total_fee": "100"})
    client = _client(v2_config, gateway)

    result = client.query_order("PAY1")

    assert result.success
    assert result.status is expected
    assert result.trade_no == "4200000001"
    assert result.amount == Decimal("1.00")
    assert gateway.requests[0][0].url.path == "/pay/orderquery"


def test_refund_partial(v2_config):
    gateway = _Gateway({"refund_id": "50000000001"})
    client = _client(v2_config, gateway)

    result = client.refund({"out_trade_no": "PAY1", "refund_amount": 50, "total_amount": 100})

    assert result.success
    assert result.status is PaymentStatus.PROCESSING
    assert result.amount == Decimal("0.50")
    assert result.trade_no == "50000000001"
    request, sent = gateway.requests[0]
    assert request.url.path == "/secapi/pay/refund"
    assert sent["refund_fee"] == "50"
    assert sent["total_fee"] == "100"
    assert sent["out_refund_no"].startswith("RF")


def test_repeated_partial_refunds_get_distinct_numbers(v2_config):
    class _DedupingGateway(_Gateway):
        """Answers a reused out_refund_no with the refund it already recorded."""

        def __init__(self):
            super().__init__()
            self.refunds = {}

        def __call__(self, request):
            refund_no = from_xml(request.content)["out_refund_no"]
            self.answer = {"refund_id": self.refunds.setdefault(refund_no, f"R{len(self.refunds) + 1}")}
            return super().__call__(request)

    gateway = _DedupingGateway()
    client = _client(v2_config, gateway)
    data = {"out_trade_no": "PAY1", "refund_amount": 30, "total_amount": 100}

    first = client.refund(data)
    second = client.refund(data)

    sent_numbers = [sent["out_refund_no"] for _, sent in gateway.requests]
    assert sent_numbers[0] != sent_numbers[1]
    assert first.trade_no != second.trade_no


def test_caller_refund_number_is_sent_unchanged(v2_config):
    gateway = _Gateway()
    client = _client(v2_config, gateway)

    client.refund({"out_trade_no": "PAY1", "refund_amount": 30, "total_amount": 100, "out_refund_no": "RF-PAY1-1"})

    assert gateway.requests[0][1]["out_refund_no"] == "RF-PAY1-1"


def test_refund_over_total_is_validation_error(v2_config):
    gateway = _Gateway()
    client = _client(v2_config, gateway)

    result = client.refund({"out_trade_no": "PAY1", "refund_amount": 150, "total_amount": 100})

    assert result.error_code == PaymentErrorCode.VALIDATION_ERROR
    assert gateway.requests == []


def test_close_order(v2_config):
    gateway = _Gateway()
    result = _client(v2_config, gateway).close_order("PAY1")
    assert result.success
    assert result.status is PaymentStatus.CLOSED
    assert gateway.requests[0][0].url.path == "/pay/closeorder"


def test_refund_uses_certificate_client_only_when_configured(v2_config, monkeypatch):
    plain = _client(v2_config, _Gateway())
    plain.refund({"out_trade_no": "PAY1", "refund_amount": 1})
    assert not plain.uses_client_certificate
    assert plain._cert_http is None

    half = _client({**v2_config, "cert_path": "/certs/apiclient_cert.pem"}, _Gateway())
    assert not half.uses_client_certificate

    calls = []

    def fake_ssl_context(self):
        calls.append(self)
        return True

    monkeypatch.setattr(WechatPayV2Client, "_ssl_context", fake_ssl_context)
    full = _client(
        {**v2_config, "cert_path": "/certs/apiclient_cert.pem", "key_path": "/certs/apiclient_key.pem"},
        _Gateway(),
    )
    result = full.refund({"out_trade_no": "PAY1", "refund_amount": 1})

    assert result.success
    assert full.uses_client_certificate
    assert full._cert_http is not None
    assert len(calls) == 1


def test_unreadable_certificate_is_config_error(v2_config):
    client = _client(
        {**v2_config, "cert_path": "/nonexistent/cert.pem", "key_path": "/nonexistent/key.pem"},
        _Gateway(),
    )
    result = client.refund({"out_trade_no": "PAY1", "refund_amount": 1})
    assert result.error_code == PaymentErrorCode.CONFIG_ERROR


def test_constructor_rejects_bad_config(v2_config):
    with pytest.raises(PaymentConfigError) as info:
        WechatPayV2Client({**v2_config, "api_key": "short"})
    assert info.value.field == "api_key"


def test_parse_notification(v2_config):
    client = _client(v2_config, _Gateway())
    body = _signed_xml({
        "return_code": "SUCCESS",
        "result_code": "SUCCESS",
        "out_trade_no": "PAY1",
        "transaction_id": "4200000001",
        "total_fee": 100,
    }).encode("utf-8")

    fields = client.parse_notification(body)

    assert fields["out_trade_no"] == "PAY1"
    with pytest.raises(PaymentApiError):
        client.parse_notification(body.replace(b"PAY1", b"PAY2"))


def test_notification_ack():
    ack = WechatPayV2Client.notification_ack()
    assert from_xml(ack) == {"return_code": "SUCCESS", "return_msg": "OK"}
