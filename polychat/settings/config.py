"""应用配置与环境变量加载逻辑。"""

import json
from functools import lru_cache
from typing import Iterable, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """集中式配置定义；进程启动时读取一次，请求路径只读。"""

    app_name: str = Field(default="PolyChat Relay", alias="APP_NAME")
    app_description: str = Field(default="多厂商大模型流式对话中继", alias="APP_DESCRIPTION")
    app_version: str = Field(default="1.0.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3001, alias="PORT")

    log_to_file: bool = Field(default=False, alias="LOG_TO_FILE")
    log_file_path: str = Field(default="logs/app.log", alias="LOG_FILE_PATH")

    cors_allow_origins: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        alias="CORS_ALLOW_ORIGINS",
    )
    frontend_url: Optional[str] = Field(default=None, alias="FRONTEND_URL")

    # 出站代理：仅对 use_proxy=True 的厂商生效
    proxy_url: Optional[str] = Field(default=None, alias="PROXY_URL")
    request_timeout_seconds: float = Field(default=30.0, alias="REQUEST_TIMEOUT_SECONDS")
    connect_timeout_seconds: float = Field(default=10.0, alias="CONNECT_TIMEOUT_SECONDS")
    # 供调用方做“整请求”重试；核心链路内部不重试
    max_retries: int = Field(default=3, alias="MAX_RETRIES")

    default_model: str = Field(default="gpt-3.5-turbo", alias="DEFAULT_MODEL")
    default_temperature: float = Field(default=0.7, alias="DEFAULT_TEMPERATURE")
    default_max_tokens: int = Field(default=2000, alias="DEFAULT_MAX_TOKENS")

    openai_base_url: Optional[str] = Field(default=None, alias="OPENAI_BASE_URL")
    anthropic_base_url: Optional[str] = Field(default=None, alias="ANTHROPIC_BASE_URL")
    gemini_base_url: Optional[str] = Field(default=None, alias="GEMINI_BASE_URL")
    zhipu_base_url: Optional[str] = Field(default=None, alias="ZHIPU_BASE_URL")
    qwen_base_url: Optional[str] = Field(default=None, alias="QWEN_BASE_URL")
    baidu_base_url: Optional[str] = Field(default=None, alias="BAIDU_BASE_URL")
    custom_base_url: Optional[str] = Field(default=None, alias="CUSTOM_BASE_URL")
    baidu_token_url: str = Field(
        default="https://aip.baidubce.com/oauth/2.0/token",
        alias="BAIDU_TOKEN_URL",
    )

    openai_default_model: Optional[str] = Field(default=None, alias="OPENAI_DEFAULT_MODEL")
    anthropic_default_model: Optional[str] = Field(default=None, alias="ANTHROPIC_DEFAULT_MODEL")
    gemini_default_model: Optional[str] = Field(default=None, alias="GEMINI_DEFAULT_MODEL")
    zhipu_default_model: Optional[str] = Field(default=None, alias="ZHIPU_DEFAULT_MODEL")
    qwen_default_model: Optional[str] = Field(default=None, alias="QWEN_DEFAULT_MODEL")
    baidu_default_model: Optional[str] = Field(default=None, alias="BAIDU_DEFAULT_MODEL")
    custom_default_model: Optional[str] = Field(default=None, alias="CUSTOM_DEFAULT_MODEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        enable_decoding=False,
        populate_by_name=True,
    )

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: object) -> List[str]:
        """支持逗号分隔的字符串或直接传入列表。"""
        if value in (None, "", []):
            return ["*"]
        if isinstance(value, str):
            text = value.strip()
            # 兼容 JSON 数组写法：["*"]
            if text.startswith("["):
                try:
                    data = json.loads(text)
                    if isinstance(data, list):
                        items = [str(item).strip() for item in data if str(item).strip()]
                        return items or ["*"]
                except json.JSONDecodeError:
                    pass
            items = [item.strip() for item in text.split(",") if item.strip()]
            return items or ["*"]
        if isinstance(value, Iterable):
            return [str(item).strip() for item in value if str(item).strip()]
        return ["*"]

    @field_validator("proxy_url", "frontend_url", "custom_base_url", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("max_retries", mode="after")
    @classmethod
    def _non_negative_retries(cls, value: int) -> int:
        return max(int(value), 0)

    def allowed_origins(self) -> List[str]:
        origins = list(self.cors_allow_origins)
        if self.frontend_url and self.frontend_url not in origins:
            origins.append(self.frontend_url)
        return origins

    def base_url_override(self, provider: str) -> Optional[str]:
        value = getattr(self, f"{provider}_base_url", None)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    def default_model_override(self, provider: str) -> Optional[str]:
        value = getattr(self, f"{provider}_default_model", None)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """使用 LRU 缓存避免 BaseSettings 反复解析。"""

    return Settings()
