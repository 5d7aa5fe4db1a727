"""Payment gateway factory with registry and per-config instance cache.

Adapters are imported lazily by dotted path, so a provider whose SDK is
absent only breaks that provider. Instances are cached per
``(provider, config fingerprint)`` for the life of the process unless
evicted.
"""
from __future__ import annotations

import hashlib
import importlib
import json
import threading
from typing import Any, Callable, Iterable, Mapping, Optional

from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from core.settings import load_provider_config
from domain.common.exceptions import PaymentConfigError, PaymentException, PaymentValidationError
from infrastructure.external.payments.validators import VALIDATORS

logger = get_logger(__name__)

ConfigLoader = Callable[[str], Mapping[str, Any]]
CacheKey = tuple[str, str]

WECHAT = "wechat"
WECHAT_V2 = "wechat_v2"
ALIPAY = "alipay"

# provider name -> (module path, class name); order is the preference order
PROVIDER_REGISTRY: dict[str, tuple[str, str]] = {
    WECHAT: ("infrastructure.external.payments.wechatpay_client", "WechatPayClient"),
    WECHAT_V2: ("infrastructure.external.payments.wechatpay_v2_client", "WechatPayV2Client"),
    ALIPAY: ("infrastructure.external.payments.alipay_client", "AlipayClient"),
}


def config_fingerprint(config: Mapping[str, Any]) -> str:
    """Stable digest of a config mapping; key order does not matter."""
    canonical = json.dumps(dict(config), sort_keys=True, default=str, ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class PaymentGatewayFactory:
    def __init__(
        self,
        config_loader: ConfigLoader = load_provider_config,
        registry: Optional[Mapping[str, tuple[str, str]]] = None,
    ) -> None:
        self._config_loader = config_loader
        self._registry = dict(registry or PROVIDER_REGISTRY)
        self._instances: dict[CacheKey, PaymentGateway] = {}
        self._key_locks: dict[CacheKey, threading.Lock] = {}
        self._lock = threading.Lock()

    def supported_providers(self) -> list[str]:
        return list(self._registry)

    def is_supported(self, provider: str) -> bool:
        return provider in self._registry

    def _ensure_supported(self, provider: str) -> None:
        if provider not in self._registry:
            raise PaymentValidationError(
                f"Unsupported payment provider: {provider}. Available: {self.supported_providers()}",
                provider=provider,
                field="provider",
            )

    def _load_class(self, provider: str) -> type:
        module_path, class_name = self._registry[provider]
        module = importlib.import_module(module_path)
        return getattr(module, class_name)

    def resolve(self, provider: str, config: Optional[Mapping[str, Any]] = None) -> PaymentGateway:
        """Return the cached gateway for ``provider`` + ``config``, building it once.

        Raises:
            PaymentValidationError: unknown provider.
            PaymentConfigError: the adapter could not be constructed.
        """
        self._ensure_supported(provider)
        final_config = dict(config) if config is not None else dict(self._config_loader(provider))
        key: CacheKey = (provider, config_fingerprint(final_config))

        with self._lock:
            instance = self._instances.get(key)
            if instance is not None:
                return instance
            key_lock = self._key_locks.setdefault(key, threading.Lock())

        # one builder per key; other keys are not blocked meanwhile
        with key_lock:
            with self._lock:
                instance = self._instances.get(key)
            if instance is not None:
                return instance

            try:
                instance = self._build(provider, final_config)
                with self._lock:
                    self._instances[key] = instance
            finally:
                with self._lock:
                    self._key_locks.pop(key, None)
            logger.info("payment_gateway_created", provider=provider, fingerprint=key[1][:12])
            return instance

    def _build(self, provider: str, config: Mapping[str, Any]) -> PaymentGateway:
        try:
            gateway_cls = self._load_class(provider)
            return gateway_cls(config)
        except PaymentConfigError:
            logger.error("payment_gateway_create_failed", provider=provider, error_type="ConfigError")
            raise
        except PaymentException as exc:
            logger.error("payment_gateway_create_failed", provider=provider, error=exc.message)
            raise PaymentConfigError(
                f"Failed to create {provider} gateway: {exc.message}", provider=provider
            ) from exc
        except Exception as exc:
            logger.error("payment_gateway_create_failed", provider=provider, error=str(exc))
            raise PaymentConfigError(f"Failed to create {provider} gateway: {exc}", provider=provider) from exc

    def resolve_many(self, providers: Iterable[str]) -> dict[str, PaymentGateway]:
        """Resolve several providers; failures are logged and skipped."""
        gateways: dict[str, PaymentGateway] = {}
        for provider in providers:
            try:
                gateways[provider] = self.resolve(provider)
            except PaymentException as exc:
                logger.warning("payment_gateway_skipped", provider=provider, error=exc.message)
        return gateways

    def validate(self, provider: str, config: Optional[Mapping[str, Any]] = None) -> None:
        """Run the provider's config checks without building anything."""
        self._ensure_supported(provider)
        validator = VALIDATORS.get(provider)
        if validator is None:
            return
        validator(config if config is not None else self._config_loader(provider))

    def available_providers(self) -> list[str]:
        """Providers whose default configuration passes validation, in registry order."""
        available = []
        for provider in self._registry:
            try:
                self.validate(provider)
            except Exception as exc:
                # one misconfigured provider must not hide the others
                logger.info(
                    "payment_provider_unavailable",
                    provider=provider,
                    reason=getattr(exc, "message", str(exc)),
                )
                continue
            available.append(provider)
        return available

    def evict(self, provider: Optional[str] = None) -> None:
        """Drop cached instances for one provider, or all of them, and close them.

        A caller still holding an evicted gateway gets a closed one.
        """
        with self._lock:
            keys = [k for k in self._instances if provider is None or k[0] == provider]
            evicted = [self._instances.pop(k) for k in keys]

        for instance in evicted:
            close = getattr(instance, "close", None)
            if close is None:
                continue
            try:
                close()
            except Exception as exc:
                logger.warning(
                    "payment_gateway_close_failed",
                    provider=getattr(instance, "provider", None),
                    error=str(exc),
                )
        logger.info("payment_gateway_cache_evicted", provider=provider or "*", count=len(evicted))

    def cached_count(self) -> int:
        with self._lock:
            return len(self._instances)


gateway_factory = PaymentGatewayFactory()


def get_payment_gateway(provider: str, config: Optional[Mapping[str, Any]] = None) -> PaymentGateway:
    return gateway_factory.resolve(provider, config)
