"""AI 上游 URL 归一化与模板渲染（SSOT）。"""

from __future__ import annotations

from typing import Optional
from urllib.parse import quote

from polychat.services.llm_catalog import ProviderProfile


# 用户常把完整接口地址误填为 base_url
_STRIP_SUFFIXES = (
    "/chat/completions",
    "/v1/messages",
    "/services/aigc/text-generation/generation",
)


def normalize_ai_base_url(base_url: str) -> str:
    """把用户误填的 base_url 归一化为“上游根地址”。

    典型误配：
    - https://host/v1/（多余斜杠）
    - https://host/v1/chat/completions（OpenAI 兼容）
    - https://api.anthropic.com/v1/messages（Anthropic）
    """

    base = str(base_url or "").strip().rstrip("/")
    lowered = base.lower()
    for suffix in _STRIP_SUFFIXES:
        if lowered.endswith(suffix):
            base = base[: -len(suffix)].rstrip("/")
            break
    return base


def render_path(
    template: str,
    *,
    model: str = "",
    api_key: str = "",
    access_token: str = "",
) -> str:
    """替换路径模板中的 {model} / {API_KEY} / {ACCESS_TOKEN}（按 URL 组件转义）。"""

    return (
        str(template or "")
        .replace("{model}", quote(str(model or ""), safe="-._~"))
        .replace("{API_KEY}", quote(str(api_key or ""), safe=""))
        .replace("{ACCESS_TOKEN}", quote(str(access_token or ""), safe=""))
    )


def build_chat_url(
    profile: ProviderProfile,
    *,
    model: str,
    api_key: str,
    streaming: bool,
    base_url: Optional[str] = None,
    access_token: str = "",
) -> str:
    base = normalize_ai_base_url(base_url or profile.base_url)
    path = render_path(
        profile.path_for(streaming=streaming),
        model=model,
        api_key=api_key,
        access_token=access_token,
    )
    return f"{base}{path}" if base else path


def redact_url(url: str) -> str:
    """日志用：去掉 query（Gemini key / 百度 access_token 都在 query 里）。"""

    text = str(url or "")
    head, sep, _ = text.partition("?")
    return f"{head}?…" if sep else head
