"""Provider catalog（model -> provider -> dialect / profile SSOT）。"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Literal, Mapping, Optional

from polychat.core.errors import UnsupportedModelError, UnsupportedProviderError
from polychat.settings.config import Settings

LlmDialect = Literal[
    "openai.chat_completions",
    "anthropic.messages",
    "gemini.generate_content",
    "dashscope.generation",
    "baidu.ernie",
]

JsonPath = tuple[Any, ...]


class Provider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    ZHIPU = "zhipu"
    QWEN = "qwen"
    BAIDU = "baidu"
    CUSTOM = "custom"


@dataclass(frozen=True, slots=True)
class ProviderProfile:
    provider: Provider
    dialect: LlmDialect
    base_url: str
    chat_path: str
    # 为空时与 chat_path 相同
    stream_chat_path: Optional[str] = None
    header_templates: Mapping[str, str] = field(default_factory=dict)
    supports_streaming: bool = True
    use_proxy: bool = False
    requires_access_token: bool = False
    default_model: str = ""
    # 非流式结果提取路径；为空时使用 adapter 内置路径
    result_paths: tuple[JsonPath, ...] = ()

    def path_for(self, *, streaming: bool) -> str:
        if streaming and self.stream_chat_path:
            return self.stream_chat_path
        return self.chat_path


@dataclass(frozen=True, slots=True)
class ModelInfo:
    model: str
    provider: Provider
    name: str


_JSON_HEADERS = {"Content-Type": "application/json"}
_BEARER_HEADERS = {"Content-Type": "application/json", "Authorization": "Bearer {API_KEY}"}

PROVIDER_PROFILES: Mapping[Provider, ProviderProfile] = MappingProxyType(
    {
        Provider.OPENAI: ProviderProfile(
            provider=Provider.OPENAI,
            dialect="openai.chat_completions",
            base_url="https://api.openai.com/v1",
            chat_path="/chat/completions",
            header_templates=_BEARER_HEADERS,
            use_proxy=True,
            default_model="gpt-3.5-turbo",
        ),
        Provider.ANTHROPIC: ProviderProfile(
            provider=Provider.ANTHROPIC,
            dialect="anthropic.messages",
            base_url="https://api.anthropic.com",
            chat_path="/v1/messages",
            header_templates={
                "Content-Type": "application/json",
                "x-api-key": "{API_KEY}",
                "anthropic-version": "2023-06-01",
            },
            use_proxy=True,
            default_model="claude-3-sonnet",
        ),
        Provider.GEMINI: ProviderProfile(
            provider=Provider.GEMINI,
            dialect="gemini.generate_content",
            base_url="https://generativelanguage.googleapis.com/v1beta",
            chat_path="/models/{model}:generateContent?key={API_KEY}",
            stream_chat_path="/models/{model}:streamGenerateContent?alt=sse&key={API_KEY}",
            header_templates=_JSON_HEADERS,
            use_proxy=True,
            default_model="gemini-pro",
        ),
        Provider.ZHIPU: ProviderProfile(
            provider=Provider.ZHIPU,
            dialect="openai.chat_completions",
            base_url="https://open.bigmodel.cn/api/paas/v4",
            chat_path="/chat/completions",
            header_templates=_BEARER_HEADERS,
            default_model="glm-4",
        ),
        Provider.QWEN: ProviderProfile(
            provider=Provider.QWEN,
            dialect="dashscope.generation",
            base_url="https://dashscope.aliyuncs.com/api/v1",
            chat_path="/services/aigc/text-generation/generation",
            header_templates=_BEARER_HEADERS,
            default_model="qwen-turbo",
        ),
        Provider.BAIDU: ProviderProfile(
            provider=Provider.BAIDU,
            dialect="baidu.ernie",
            base_url="https://aip.baidubce.com",
            chat_path="/rpc/2.0/ai/v1/chat/eb-instant?access_token={ACCESS_TOKEN}",
            header_templates=_JSON_HEADERS,
            requires_access_token=True,
            default_model="ernie-bot",
        ),
        Provider.CUSTOM: ProviderProfile(
            provider=Provider.CUSTOM,
            dialect="openai.chat_completions",
            base_url="",
            chat_path="/chat/completions",
            header_templates=_BEARER_HEADERS,
            use_proxy=True,
            default_model="gpt-3.5-turbo",
        ),
    }
)

MODEL_CATALOG: Mapping[str, ModelInfo] = MappingProxyType(
    {
        info.model: info
        for info in (
            ModelInfo("gpt-4", Provider.OPENAI, "GPT-4"),
            ModelInfo("gpt-4-turbo", Provider.OPENAI, "GPT-4 Turbo"),
            ModelInfo("gpt-3.5-turbo", Provider.OPENAI, "GPT-3.5 Turbo"),
            ModelInfo("claude-3-opus", Provider.ANTHROPIC, "Claude 3 Opus"),
            ModelInfo("claude-3-sonnet", Provider.ANTHROPIC, "Claude 3 Sonnet"),
            ModelInfo("claude-3-haiku", Provider.ANTHROPIC, "Claude 3 Haiku"),
            ModelInfo("gemini-pro", Provider.GEMINI, "Gemini Pro"),
            ModelInfo("gemini-pro-vision", Provider.GEMINI, "Gemini Pro Vision"),
            ModelInfo("glm-4", Provider.ZHIPU, "智谱GLM-4"),
            ModelInfo("glm-3-turbo", Provider.ZHIPU, "智谱GLM-3 Turbo"),
            ModelInfo("qwen-turbo", Provider.QWEN, "通义千问 Turbo"),
            ModelInfo("qwen-plus", Provider.QWEN, "通义千问 Plus"),
            ModelInfo("qwen-max", Provider.QWEN, "通义千问 Max"),
            ModelInfo("ernie-bot", Provider.BAIDU, "文心一言"),
            ModelInfo("ernie-bot-turbo", Provider.BAIDU, "文心一言 Turbo"),
        )
    }
)


def parse_provider(value: Any) -> Provider:
    if isinstance(value, Provider):
        return value
    text = str(value or "").strip().lower()
    try:
        return Provider(text)
    except ValueError as exc:
        raise UnsupportedProviderError(f"Unsupported AI provider: {value}") from exc


def resolve_model(model: str) -> ModelInfo:
    key = str(model or "").strip()
    info = MODEL_CATALOG.get(key)
    if info is None:
        raise UnsupportedModelError(f"Unsupported model: {model}")
    return info


class ProviderCatalog:
    """把静态 profile 表与启动期配置（base_url / 默认模型覆盖）合并。"""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._profiles: dict[Provider, ProviderProfile] = {
            provider: self._apply_overrides(profile) for provider, profile in PROVIDER_PROFILES.items()
        }

    def _apply_overrides(self, profile: ProviderProfile) -> ProviderProfile:
        changes: dict[str, Any] = {}
        base_url = self._settings.base_url_override(profile.provider.value)
        if base_url:
            changes["base_url"] = base_url
        default_model = self._settings.default_model_override(profile.provider.value)
        if default_model:
            changes["default_model"] = default_model
        return replace(profile, **changes) if changes else profile

    def profile(self, provider: Any) -> ProviderProfile:
        return self._profiles[parse_provider(provider)]

    def providers(self) -> list[str]:
        return [provider.value for provider in self._profiles]

    def default_model(self, provider: Any) -> str:
        return self.profile(provider).default_model

    def list_models(self) -> list[dict[str, Any]]:
        return [
            {"id": info.model, "name": info.name, "provider": info.provider.value}
            for info in MODEL_CATALOG.values()
        ]


__all__ = [
    "JsonPath",
    "LlmDialect",
    "MODEL_CATALOG",
    "ModelInfo",
    "PROVIDER_PROFILES",
    "Provider",
    "ProviderCatalog",
    "ProviderProfile",
    "parse_provider",
    "resolve_model",
]
