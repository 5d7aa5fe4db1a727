"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Each provider has its own nested model, e.g. ``WECHAT_V2__API_KEY`` or
``ALIPAY__PRIVATE_KEY_PATH``. The same models are used by the adapters as
their typed configuration once a raw mapping has passed validation.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.config import settings
from domain.common.exceptions import PaymentValidationError


class WechatSettings(BaseModel):
    """WeChat Pay v3 (SDK backed)."""

    model_config = ConfigDict(frozen=True)

    app_id: Optional[str] = None
    mch_id: Optional[str] = None
    mch_serial_number: Optional[str] = None  # merchant API certificate serial
    private_key_path: Optional[str] = None
    wechatpay_cert_path: Optional[str] = None  # platform certificate
    api_v3_key: Optional[str] = None
    notify_url: Optional[str] = None


class WechatV2Settings(BaseModel):
    """WeChat Pay V2 (legacy XML protocol)."""

    model_config = ConfigDict(frozen=True)

    app_id: Optional[str] = None
    mch_id: Optional[str] = None
    api_key: Optional[str] = None  # 32 chars
    notify_url: Optional[str] = None
    cert_path: Optional[str] = None  # client certificate, refunds only
    key_path: Optional[str] = None
    spbill_create_ip: str = "127.0.0.1"
    gateway: str = "https://api.mch.weixin.qq.com/"


class AlipaySettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    app_id: Optional[str] = None
    # file path or literal key, either one is enough
    private_key_path: Optional[str] = None
    private_key: Optional[str] = None
    alipay_public_key_path: Optional[str] = None
    alipay_public_key: Optional[str] = None
    notify_url: Optional[str] = None
    sandbox: bool = False
    sign_type: str = "RSA2"


class PaymentSettings(BaseSettings):
    default_provider: str = Field(default="wechat")
    # seconds, per request; no retries
    timeout: float = 30.0

    wechat: WechatSettings = Field(default_factory=WechatSettings)
    wechat_v2: WechatV2Settings = Field(default_factory=WechatV2Settings)
    alipay: AlipaySettings = Field(default_factory=AlipaySettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()


# Keys holding filesystem paths, per provider
PATH_FIELDS: dict[str, tuple[str, ...]] = {
    "wechat": ("private_key_path", "wechatpay_cert_path"),
    "wechat_v2": ("cert_path", "key_path"),
    "alipay": ("private_key_path", "alipay_public_key_path"),
}


def resolve_path(path: Optional[str], root: Optional[Path] = None) -> str:
    """Return ``path`` made absolute against the project root.

    Empty values stay empty. POSIX absolute paths and Windows drive paths
    (``C:\\...``) are returned untouched.
    """
    if not path:
        return ""
    if path.startswith("/") or ":\\" in path:
        return path
    base = root if root is not None else settings.PROJECT_ROOT
    return str(Path(base) / path)


def load_provider_config(provider: str, source: Optional[PaymentSettings] = None) -> dict[str, Any]:
    """Load the default configuration mapping for one provider.

    Raises:
        PaymentValidationError: unknown provider name.
    """
    cfg_source = source or payment_settings
    section = getattr(cfg_source, provider, None) if provider in PATH_FIELDS else None
    if not isinstance(section, BaseModel):
        raise PaymentValidationError(f"Unsupported payment provider: {provider}", provider=provider)

    config = section.model_dump()
    for key in PATH_FIELDS[provider]:
        if config.get(key):
            config[key] = resolve_path(config[key])
    return config
