"""Pytest bootstrap configuration.

Keep processor credentials from the developer environment out of the
tests and give every test an empty gateway cache.
"""
import os

import pytest

for _name in list(os.environ):
    if _name.upper().startswith(("WECHAT__", "WECHAT_V2__", "ALIPAY__")):
        del os.environ[_name]


V2_API_KEY = "0123456789abcdef0123456789abcdef"


@pytest.fixture(autouse=True)
def _fresh_gateway_cache():
    from infrastructure.external.payments import gateway_factory

    gateway_factory.evict()
    yield
    gateway_factory.evict()


@pytest.fixture
def v2_config():
    return {
        "app_id": "wx1234567890abcdef",
        "mch_id": "1900000109",
        "api_key": V2_API_KEY,
        "notify_url": "https://shop.example.com/notify/wechat",
    }
