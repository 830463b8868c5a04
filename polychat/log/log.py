import inspect
import logging
import sys
from pathlib import Path
from typing import Optional

from loguru import logger as loguru_logger

from polychat.core.middleware import get_current_request_id
from polychat.settings.config import Settings, get_settings

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<magenta>{extra[request_id]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[request_id]} | {name}:{function}:{line} - {message}"


class InterceptHandler(logging.Handler):
    """将标准 logging 的日志转发到 loguru。"""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # 跳过 logging 模块自身的栈帧，定位真正的调用方
        frame, depth = inspect.currentframe(), 0
        while frame is not None and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        loguru_logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _bind_request_id(record) -> None:
    # 流式中继的日志按 X-Request-Id 串联；请求之外记为 "-"
    record["extra"].setdefault("request_id", get_current_request_id() or "-")


class Loggin:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self.level = "DEBUG" if self._settings.debug else "INFO"

    def setup_logger(self):
        # stderr 输出，避免与 uvicorn 的 stdout 混杂
        loguru_logger.remove()
        loguru_logger.configure(patcher=_bind_request_id)
        loguru_logger.add(sink=sys.stderr, level=self.level, format=_CONSOLE_FORMAT)

        logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
        # httpx 的 INFO 日志带完整 URL（Gemini key 在 query 里）
        logging.getLogger("httpx").setLevel(logging.WARNING)

        if self._settings.log_to_file:
            file_path = Path(self._settings.log_file_path)
            file_path.parent.mkdir(parents=True, exist_ok=True)
            loguru_logger.add(
                sink=str(file_path),
                level=self.level,
                format=_FILE_FORMAT,
                rotation="100 MB",
                retention="10 days",
                enqueue=True,
                backtrace=False,
                diagnose=False,
            )

        return loguru_logger


def setup_logging(settings: Optional[Settings] = None):
    return Loggin(settings).setup_logger()
