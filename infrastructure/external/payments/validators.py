"""
Configuration preconditions, checked before any adapter builds a client.

Each validator takes the raw provider mapping and raises
``PaymentConfigError`` naming the first missing or invalid field, in
declaration order. Only filesystem existence checks have side effects.
"""
from __future__ import annotations

import os
from typing import Any, Callable, Mapping

from domain.common.exceptions import PaymentConfigError


WECHAT_V2_API_KEY_LENGTH = 32


def _filled(config: Mapping[str, Any], key: str) -> bool:
    value = config.get(key)
    return isinstance(value, str) and value.strip() != ""


def _require(provider: str, config: Mapping[str, Any], required: dict[str, str]) -> None:
    for key, label in required.items():
        if not _filled(config, key):
            raise PaymentConfigError(f"{provider} config missing: {key} ({label})", provider=provider, field=key)


def _require_file(provider: str, config: Mapping[str, Any], key: str, label: str) -> None:
    path = config[key]
    if not os.path.exists(path):
        raise PaymentConfigError(f"{label} not found: {path}", provider=provider, field=key)


def _require_one_of(provider: str, config: Mapping[str, Any], path_key: str, literal_key: str, label: str) -> None:
    has_path = _filled(config, path_key)
    has_literal = _filled(config, literal_key)
    if not has_path and not has_literal:
        raise PaymentConfigError(
            f"{provider} config missing: {path_key} or {literal_key} ({label}, one of the two)",
            provider=provider,
            field=path_key,
        )
    if has_path and not has_literal:
        _require_file(provider, config, path_key, label)


def validate_wechat_config(config: Mapping[str, Any]) -> None:
    """WeChat Pay v3: credentials plus merchant key and platform certificate files."""
    _require("wechat", config, {
        "app_id": "WeChat app id",
        "mch_id": "merchant id",
        "mch_serial_number": "merchant API certificate serial number",
        "private_key_path": "merchant private key file",
        "wechatpay_cert_path": "WeChat Pay platform certificate file",
        "notify_url": "payment notify URL",
    })
    _require_file("wechat", config, "private_key_path", "Merchant private key file")
    _require_file("wechat", config, "wechatpay_cert_path", "WeChat Pay platform certificate file")


def validate_wechat_v2_config(config: Mapping[str, Any]) -> None:
    _require("wechat_v2", config, {
        "app_id": "WeChat app id",
        "mch_id": "merchant id",
        "api_key": "API key",
        "notify_url": "payment notify URL",
    })
    if len(config["api_key"]) != WECHAT_V2_API_KEY_LENGTH:
        raise PaymentConfigError(
            f"wechat_v2 api_key must be exactly {WECHAT_V2_API_KEY_LENGTH} characters",
            provider="wechat_v2",
            field="api_key",
        )


def validate_alipay_config(config: Mapping[str, Any]) -> None:
    """Alipay: keys may be given as file paths or as literal key text."""
    _require("alipay", config, {
        "app_id": "Alipay app id",
        "notify_url": "payment notify URL",
    })
    _require_one_of("alipay", config, "private_key_path", "private_key", "app private key")
    _require_one_of("alipay", config, "alipay_public_key_path", "alipay_public_key", "Alipay public key")


VALIDATORS: dict[str, Callable[[Mapping[str, Any]], None]] = {
    "wechat": validate_wechat_config,
    "wechat_v2": validate_wechat_v2_config,
    "alipay": validate_alipay_config,
}
