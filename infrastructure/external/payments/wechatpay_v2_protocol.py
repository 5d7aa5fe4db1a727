"""
WeChat Pay V2 wire format: request signing and the flat XML envelope.

Signing rule (MD5 sign_type): drop ``sign`` and empty values, sort the
remaining fields by name, join as ``k=v&``, append ``key=<api_key>``,
MD5 and uppercase the hex digest.

Envelope: ``<xml><field>value</field>...</xml>``. Numeric values are plain
element content, everything else goes in a CDATA section.
"""
from __future__ import annotations

import hashlib
import hmac
import re
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping
from xml.etree import ElementTree

from domain.common.exceptions import PaymentNetworkError


NONCE_ALPHABET = string.ascii_letters + string.digits
NONCE_LENGTH = 32

# China Standard Time, no DST
CST = timezone(timedelta(hours=8), name="CST")
TIME_EXPIRE_FORMAT = "%Y%m%d%H%M%S"

_NUMERIC = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")
_FIELD_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_.-]*")


def generate_nonce(length: int = NONCE_LENGTH) -> str:
    return "".join(secrets.choice(NONCE_ALPHABET) for _ in range(length))


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def sign(fields: Mapping[str, Any], api_key: str) -> str:
    """Canonical MD5 signature over every non-empty field except ``sign``."""
    parts = []
    for key in sorted(fields):
        value = _as_text(fields[key])
        if key == "sign" or value == "":
            continue
        parts.append(f"{key}={value}&")
    payload = "".join(parts) + f"key={api_key}"
    return hashlib.md5(payload.encode("utf-8")).hexdigest().upper()


def verify_sign(fields: Mapping[str, Any], api_key: str) -> bool:
    expected = fields.get("sign")
    if not expected:
        return False
    return hmac.compare_digest(sign(fields, api_key), str(expected))


def is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    return isinstance(value, str) and _NUMERIC.fullmatch(value) is not None


def _cdata(text: str) -> str:
    # "]]>" cannot appear inside one CDATA section; split it across two.
    # A raw CR would be normalized away by the parser, so it goes out as &#13;
    text = text.replace("]]>", "]]]]><![CDATA[>").replace("\r", "]]>&#13;<![CDATA[")
    return "<![CDATA[" + text + "]]>"


def to_xml(fields: Mapping[str, Any]) -> str:
    chunks = ["<xml>"]
    for key, value in fields.items():
        if not _FIELD_NAME.fullmatch(key):
            raise ValueError(f"invalid XML field name: {key!r}")
        if is_numeric(value):
            chunks.append(f"<{key}>{value}</{key}>")
        else:
            chunks.append(f"<{key}>{_cdata(_as_text(value))}</{key}>")
    chunks.append("</xml>")
    return "".join(chunks)


def from_xml(payload: bytes | str) -> dict[str, str]:
    """Parse a flat envelope into ``{element: text}``.

    Raises:
        PaymentNetworkError: the payload is not a usable XML envelope.
    """
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    if not payload or not payload.strip():
        raise PaymentNetworkError("Empty response body", provider="wechat_v2")
    if b"<!DOCTYPE" in payload or b"<!ENTITY" in payload:
        raise PaymentNetworkError("Refusing XML with DTD/entities", provider="wechat_v2")
    try:
        root = ElementTree.fromstring(payload)
    except ElementTree.ParseError as exc:
        raise PaymentNetworkError(f"Malformed XML response: {exc}", provider="wechat_v2") from exc
    return {child.tag: (child.text or "") for child in root}


def format_time_expire(moment: datetime) -> str:
    """``yyyyMMddHHmmss`` in CST; naive datetimes are taken as CST wall time."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=CST)
    return moment.astimezone(CST).strftime(TIME_EXPIRE_FORMAT)
