"""对话请求 / 流式增量 / 终态的值类型。

每个请求独占一份实例，不跨请求共享可变状态。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Union

from polychat.core.errors import ChatError, InvalidRequestError

Role = Literal["system", "user", "assistant"]

_ROLES = ("system", "user", "assistant")


@dataclass(frozen=True, slots=True)
class Message:
    role: Role
    content: str

    def __post_init__(self) -> None:
        if self.role not in _ROLES:
            raise InvalidRequestError(f"unsupported message role: {self.role}")
        if not isinstance(self.content, str):
            raise InvalidRequestError("message content must be text")


@dataclass(frozen=True, slots=True)
class Credentials:
    api_key: Optional[str] = None
    secret_key: Optional[str] = None

    def __repr__(self) -> str:
        # 避免密钥出现在日志 / 异常回溯里
        return (
            f"Credentials(api_key={'***' if self.api_key else None}, "
            f"secret_key={'***' if self.secret_key else None})"
        )


@dataclass(frozen=True, slots=True)
class ChatParameters:
    temperature: Optional[float] = 0.7
    max_tokens: Optional[int] = 2000
    top_p: Optional[float] = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ChatRequest:
    model: str
    provider: str
    messages: tuple[Message, ...]
    streaming: bool = True
    parameters: ChatParameters = field(default_factory=ChatParameters)
    credentials: Credentials = field(default_factory=Credentials)
    # 仅 custom 厂商使用：请求级 base_url
    base_url: Optional[str] = None

    def __post_init__(self) -> None:
        messages = tuple(self.messages or ())
        object.__setattr__(self, "messages", messages)
        if not messages:
            raise InvalidRequestError("messages must not be empty")
        systems = sum(1 for msg in messages if msg.role == "system")
        if systems > 1:
            raise InvalidRequestError("at most one system message is allowed")

    @property
    def system_message(self) -> Optional[Message]:
        return next((msg for msg in self.messages if msg.role == "system"), None)

    @property
    def chat_messages(self) -> tuple[Message, ...]:
        return tuple(msg for msg in self.messages if msg.role != "system")


@dataclass(frozen=True, slots=True)
class UpstreamRequest:
    url: str
    headers: dict[str, str]
    body: dict[str, Any]


@dataclass(frozen=True, slots=True)
class NormalizedIncrement:
    delta_text: str
    cumulative_text: str


@dataclass(frozen=True, slots=True)
class Completed:
    text: str


@dataclass(frozen=True, slots=True)
class Failed:
    error: ChatError

    @property
    def message(self) -> str:
        return self.error.message


StreamOutcome = Union[Completed, Failed]


__all__ = [
    "ChatParameters",
    "ChatRequest",
    "Completed",
    "Credentials",
    "Failed",
    "Message",
    "NormalizedIncrement",
    "Role",
    "StreamOutcome",
    "UpstreamRequest",
]
