from __future__ import annotations

from dataclasses import replace

from polychat.services.ai_url import build_chat_url, normalize_ai_base_url, redact_url, render_path
from polychat.services.llm_catalog import PROVIDER_PROFILES, Provider


def test_normalize_ai_base_url_strips_common_suffixes():
    assert normalize_ai_base_url("https://api.openai.com/v1") == "https://api.openai.com/v1"
    assert normalize_ai_base_url("https://api.openai.com/v1/") == "https://api.openai.com/v1"
    assert normalize_ai_base_url("https://api.openai.com/v1/chat/completions") == "https://api.openai.com/v1"
    assert normalize_ai_base_url("https://api.anthropic.com/v1/messages") == "https://api.anthropic.com"
    assert (
        normalize_ai_base_url("https://dashscope.aliyuncs.com/api/v1/services/aigc/text-generation/generation")
        == "https://dashscope.aliyuncs.com/api/v1"
    )
    assert normalize_ai_base_url("  ") == ""


def test_render_path_escapes_substitutions():
    path = render_path("/models/{model}:generateContent?key={API_KEY}", model="gemini-pro", api_key="a&b=c")
    assert path == "/models/gemini-pro:generateContent?key=a%26b%3Dc"
    assert render_path("/chat?access_token={ACCESS_TOKEN}", access_token="24.x/y") == "/chat?access_token=24.x%2Fy"


def test_build_chat_url_selects_stream_path():
    profile = PROVIDER_PROFILES[Provider.GEMINI]
    stream = build_chat_url(profile, model="gemini-pro", api_key="k", streaming=True)
    plain = build_chat_url(profile, model="gemini-pro", api_key="k", streaming=False)
    assert stream.endswith(":streamGenerateContent?alt=sse&key=k")
    assert plain.endswith(":generateContent?key=k")


def test_build_chat_url_prefers_request_base_url():
    profile = replace(PROVIDER_PROFILES[Provider.OPENAI], base_url="https://proxy.internal/v1")
    assert build_chat_url(profile, model="gpt-4", api_key="k", streaming=True) == (
        "https://proxy.internal/v1/chat/completions"
    )
    assert build_chat_url(profile, model="gpt-4", api_key="k", streaming=True, base_url="https://other/v1/") == (
        "https://other/v1/chat/completions"
    )


def test_redact_url_drops_query():
    assert redact_url("https://g.example/models/x:generateContent?key=secret") == "https://g.example/models/x:generateContent?…"
    assert redact_url("https://api.openai.com/v1/chat/completions") == "https://api.openai.com/v1/chat/completions"
