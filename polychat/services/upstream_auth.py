"""上游鉴权头（按厂商 profile 的模板渲染）。"""

from __future__ import annotations

from typing import Mapping, Optional

from polychat.core.middleware import REQUEST_ID_HEADER_NAME, get_current_request_id


def render_auth_headers(header_templates: Mapping[str, str], api_key: str) -> dict[str, str]:
    """把 `{API_KEY}` 占位符替换为真实 key；不含占位符的头原样保留。"""

    key = str(api_key or "").strip()
    headers: dict[str, str] = {}
    for name, template in (header_templates or {}).items():
        value = str(template or "")
        if "{API_KEY}" in value:
            # key 为空时不发送空鉴权头（Gemini/百度的 key 在 URL 上）
            if not key:
                continue
            value = value.replace("{API_KEY}", key)
        headers[str(name)] = value
    return headers


def build_upstream_headers(
    header_templates: Mapping[str, str],
    api_key: str,
    *,
    streaming: bool,
    extra: Optional[Mapping[str, str]] = None,
    request_id: Optional[str] = None,
) -> dict[str, str]:
    headers = render_auth_headers(header_templates, api_key)
    headers.setdefault("Content-Type", "application/json")
    if streaming:
        headers["Accept"] = "text/event-stream"
        # SSE 流式：显式禁用压缩，避免中间层 gzip 缓冲导致“看起来不流式”。
        headers["Accept-Encoding"] = "identity"
    if extra:
        headers.update(extra)
    rid = request_id or get_current_request_id()
    if rid:
        headers[REQUEST_ID_HEADER_NAME] = rid
    return headers


def mask_secret(value: Optional[str]) -> str:
    """日志脱敏：sk-1234567890abcd -> sk-1…abcd。"""

    text = str(value or "").strip()
    if not text:
        return "[EMPTY]"
    if len(text) <= 8:
        return "***"
    return f"{text[:4]}…{text[-4:]}"
