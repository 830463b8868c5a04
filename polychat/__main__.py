"""python -m polychat：以 uvicorn 启动中继服务。"""

import uvicorn

from polychat.settings.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "polychat:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        # 日志统一走 loguru（InterceptHandler）
        log_config=None,
    )


if __name__ == "__main__":
    main()
