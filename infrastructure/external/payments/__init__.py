"""
Payment gateway adapters and the factory that resolves them.
"""
from __future__ import annotations

from .factory import (
    ALIPAY,
    PROVIDER_REGISTRY,
    WECHAT,
    WECHAT_V2,
    PaymentGatewayFactory,
    config_fingerprint,
    gateway_factory,
    get_payment_gateway,
)


__all__ = [
    "ALIPAY",
    "WECHAT",
    "WECHAT_V2",
    "PROVIDER_REGISTRY",
    "PaymentGatewayFactory",
    "config_fingerprint",
    "gateway_factory",
    "get_payment_gateway",
]
