"""流式归一化（vendor StreamEvent -> {delta, cumulative} 增量 + 唯一终态）。

不变量：
- 每个流恰好一个终态（Completed / Failed），终态之后不再回调
- 增量严格按行到达顺序、串行回调
- 空 delta 不回调；无内容且无显式结束标记时以 Completed("") 结束
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterable, Awaitable, Callable
from typing import Any, Optional, Union

from polychat.core.errors import ChatError, StreamCancelledError, UpstreamHTTPError
from polychat.services.chat_models import Completed, Failed, NormalizedIncrement, StreamOutcome
from polychat.services.providers.base import ContentDelta, StreamDone, StreamError, StreamEvent

logger = logging.getLogger(__name__)

LineParser = Callable[[str], StreamEvent]
IncrementCallback = Callable[[NormalizedIncrement], Union[Awaitable[None], None]]
OutcomeCallback = Callable[[StreamOutcome], Union[Awaitable[None], None]]


async def invoke_callback(callback: Optional[Callable[[Any], Any]], value: Any) -> None:
    if callback is None:
        return
    result = callback(value)
    if inspect.isawaitable(result):
        await result


class StreamNormalizer:
    """每个请求一个实例（独占累计缓冲）。"""

    def __init__(
        self,
        parse_line: LineParser,
        *,
        on_increment: Optional[IncrementCallback] = None,
        on_outcome: Optional[OutcomeCallback] = None,
    ) -> None:
        self._parse_line = parse_line
        self._on_increment = on_increment
        self._on_outcome = on_outcome
        self._cumulative = ""
        self._outcome: Optional[StreamOutcome] = None
        self.increments = 0
        self.lines = 0

    @property
    def cumulative_text(self) -> str:
        return self._cumulative

    @property
    def outcome(self) -> Optional[StreamOutcome]:
        return self._outcome

    @property
    def finished(self) -> bool:
        return self._outcome is not None

    def apply(self, event: StreamEvent) -> tuple[Optional[NormalizedIncrement], Optional[StreamOutcome]]:
        """纯状态迁移：返回（待发送增量, 终态），不触发回调。"""

        if self.finished:
            return None, None

        if isinstance(event, ContentDelta):
            text = event.text or ""
            if event.cumulative:
                prior = self._cumulative
                if text.startswith(prior):
                    delta = text[len(prior) :]
                else:
                    # 厂商回传更短/分叉的文本时以新文本为准重新同步
                    logger.debug("[CUMULATIVE_RESYNC] prior_len=%s new_len=%s", len(prior), len(text))
                    delta = text
                self._cumulative = text
            else:
                delta = text
                self._cumulative += text
            increment = NormalizedIncrement(delta, self._cumulative) if delta else None
            outcome = Completed(self._cumulative) if event.finish else None
            return increment, outcome

        if isinstance(event, StreamDone):
            return None, Completed(self._cumulative)

        if isinstance(event, StreamError):
            return None, Failed(UpstreamHTTPError(event.message))

        return None, None

    def feed(self, line: str) -> tuple[Optional[NormalizedIncrement], Optional[StreamOutcome]]:
        if self.finished:
            return None, None
        self.lines += 1
        return self.apply(self._parse_line(line))

    async def emit(self, increment: NormalizedIncrement) -> None:
        if self.finished:
            return
        self.increments += 1
        await invoke_callback(self._on_increment, increment)

    async def finalize(self, outcome: StreamOutcome) -> StreamOutcome:
        """幂等：只有第一次生效，之后返回已确定的终态。"""

        if self._outcome is not None:
            return self._outcome
        self._outcome = outcome
        await invoke_callback(self._on_outcome, outcome)
        return outcome

    async def fail(self, error: ChatError) -> StreamOutcome:
        return await self.finalize(Failed(error))

    async def run(
        self,
        lines: AsyncIterable[str],
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> StreamOutcome:
        """消费行序列直到显式结束 / 错误 / 取消 / body 结束。

        传输层异常原样抛出，由调用方转成 Failed（已发送的增量保持有效）。
        """

        iterator = lines.__aiter__()
        try:
            async for line in iterator:
                if cancel_event is not None and cancel_event.is_set():
                    return await self.fail(StreamCancelledError())
                increment, outcome = self.feed(line)
                if increment is not None:
                    await self.emit(increment)
                if outcome is not None:
                    return await self.finalize(outcome)
        finally:
            # 显式结束后不再读取剩余字节
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

        if cancel_event is not None and cancel_event.is_set():
            return await self.fail(StreamCancelledError())
        return await self.finalize(Completed(self._cumulative))


__all__ = ["IncrementCallback", "LineParser", "OutcomeCallback", "StreamNormalizer", "invoke_callback"]
