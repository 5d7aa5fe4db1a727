"""领域层业务异常定义，供领域、应用与基础设施使用。

支付网关的失败只允许落入五个类别（见 PaymentErrorCode），
每个异常类固定绑定其中一个类别。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import PaymentErrorCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class PaymentException(BusinessException):
    """支付异常基类；子类决定错误类别。"""

    category: PaymentErrorCode = PaymentErrorCode.BUSINESS_ERROR
    error_name: str = "BusinessError"

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        field: str | None = None,
        details: Optional[dict] = None,
    ):
        full_details = {"provider": provider} if provider else {}
        if details:
            full_details.update(details)
        super().__init__(
            code=self.category,
            message=message,
            error_type=self.error_name,
            details=full_details or None,
            field=field,
        )
        self.provider = provider


class PaymentConfigError(PaymentException):
    category = PaymentErrorCode.CONFIG_ERROR
    error_name = "ConfigError"


class PaymentNetworkError(PaymentException):
    category = PaymentErrorCode.NETWORK_ERROR
    error_name = "NetworkError"


class PaymentApiError(PaymentException):
    category = PaymentErrorCode.API_ERROR
    error_name = "ApiError"


class PaymentValidationError(PaymentException):
    category = PaymentErrorCode.VALIDATION_ERROR
    error_name = "ValidationError"


class PaymentBusinessError(PaymentException):
    category = PaymentErrorCode.BUSINESS_ERROR
    error_name = "BusinessError"
