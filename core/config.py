"""
配置文件 - 项目配置管理
"""
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """项目配置"""

    # 基础配置
    PROJECT_NAME: str = Field(default="Scan-to-Pay Gateway")
    VERSION: str = Field(default="1.0.0")
    DEBUG: bool = Field(default=False)
    ENVIRONMENT: str = Field(default="development")

    # 相对路径（证书、私钥）以此为根目录解析
    PROJECT_ROOT: Path = Field(default=Path(__file__).resolve().parents[1])

    # 日志中需要脱敏的字段名（小写比较）
    LOG_REDACT_KEYS: list[str] = Field(
        default=["api_key", "api_v3_key", "private_key", "alipay_public_key", "sign", "key"],
    )

    # pydantic-settings v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    @field_validator("LOG_REDACT_KEYS", mode="before")
    @classmethod
    def _parse_redact_keys(cls, v):
        """允许逗号分隔字符串。"""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v


settings = Settings()
