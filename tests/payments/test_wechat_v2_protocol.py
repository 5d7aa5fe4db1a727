from datetime import datetime, timezone

import pytest

from domain.common.exceptions import PaymentNetworkError
from infrastructure.external.payments.wechatpay_v2_protocol import (
    NONCE_ALPHABET,
    format_time_expire,
    from_xml,
    generate_nonce,
    is_numeric,
    sign,
    to_xml,
    verify_sign,
)


def test_sign_matches_published_vector():
    fields = {
        "appid": "wxd930ea5d5a258f4f",
        "mch_id": "10000100",
        "device_info": "1000",
        "body": "test",
        "nonce_str": "ibuaiVcKdpRxkhJA",
    }
    assert sign(fields, "192006250b4c09247ec02edce69f6a2d") == "9A0A8659F005D6984697E2CA0A9CF3B7"


def test_sign_ignores_order_empty_values_and_existing_sign():
    a = {"b": "2", "a": "1", "c": ""}
    b = {"a": "1", "sign": "WHATEVER", "b": "2", "d": None}
    assert sign(a, "k") == sign(b, "k")
    assert sign(a, "k") != sign(a, "other")
    assert sign(a, "k").isupper()


def test_verify_sign():
    fields = {"return_code": "SUCCESS", "total_fee": "100"}
    fields["sign"] = sign(fields, "k")
    assert verify_sign(fields, "k")
    assert not verify_sign({**fields, "total_fee": "101"}, "k")
    assert not verify_sign({"return_code": "SUCCESS"}, "k")


def test_numeric_values_are_plain_others_cdata():
    xml = to_xml({"total_fee": 100, "rate": "1.5", "body": "Tea & cake", "code": "007a"})
    assert "<total_fee>100</total_fee>" in xml
    assert "<rate>1.5</rate>" in xml
    assert "<body><![CDATA[Tea & cake]]></body>" in xml
    assert "<code><![CDATA[007a]]></code>" in xml
    assert xml.startswith("<xml>") and xml.endswith("</xml>")


def test_is_numeric():
    assert is_numeric(1) and is_numeric("12") and is_numeric("-3.5") and is_numeric("1e3")
    assert not is_numeric(True)
    assert not is_numeric("12a")
    assert not is_numeric("")


def test_xml_round_trip_keeps_cdata_terminator():
    fields = {"out_trade_no": "PAY1", "total_fee": 100, "attach": "a]]>b<c>"}
    parsed = from_xml(to_xml(fields))
    assert parsed == {"out_trade_no": "PAY1", "total_fee": "100", "attach": "a]]>b<c>"}


@pytest.mark.parametrize("value", ["line1\r\nline2", "\r", "a]]>\rb", "tail\r"])
def test_xml_round_trip_keeps_carriage_returns(value):
    fields = {"attach": value}
    parsed = from_xml(to_xml(fields))
    assert parsed == fields
    assert verify_sign({**parsed, "sign": sign(fields, "k")}, "k")


def test_invalid_field_name_rejected():
    with pytest.raises(ValueError):
        to_xml({"bad tag": "x"})


@pytest.mark.parametrize(
    "payload",
    [
        b"",
        b"   ",
        b"<xml><a>1</a>",
        b'<!DOCTYPE xml [<!ENTITY x "boom">]><xml><a>&x;</a></xml>',
        "not xml at all",
    ],
)
def test_from_xml_rejects_unusable_payloads(payload):
    with pytest.raises(PaymentNetworkError):
        from_xml(payload)


def test_nonce_shape():
    nonce = generate_nonce()
    assert len(nonce) == 32
    assert set(nonce) <= set(NONCE_ALPHABET)
    assert generate_nonce() != nonce


def test_time_expire_is_cst():
    assert format_time_expire(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)) == "20240101200000"
    assert format_time_expire(datetime(2024, 1, 1, 12, 0, 0)) == "20240101120000"
