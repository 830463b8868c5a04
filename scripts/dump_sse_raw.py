#!/usr/bin/env python3
"""
用途：向本地中继 POST /api/chat，逐行输出原始 SSE 响应。

- 原样输出每行 data: 以及事件边界空行（不做 pretty）
- 结束时校验：所有 {"content"} 增量拼接是否等于 {"fullContent"}
- 非 200 响应直接打印错误 JSON
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import dataclass, field
from http.client import HTTPConnection, HTTPSConnection
from urllib.parse import urlparse


def _write_line(text: str) -> None:
    sys.stdout.buffer.write((text + "\n").encode("utf-8"))
    sys.stdout.buffer.flush()


@dataclass
class FrameTally:
    deltas: list[str] = field(default_factory=list)
    full_content: str | None = None
    error: str | None = None

    def add(self, payload: bytes) -> None:
        try:
            data = json.loads(payload)
        except ValueError:
            _write_line(f"[warn] non-JSON data payload: {payload[:80]!r}")
            return
        if not isinstance(data, dict):
            return
        if "content" in data:
            self.deltas.append(str(data["content"]))
        elif "fullContent" in data:
            self.full_content = str(data["fullContent"])
        elif "error" in data:
            self.error = str(data["error"])

    def report(self) -> int:
        _write_line("")
        _write_line(f"=== frames: content={len(self.deltas)} ===")
        if self.error is not None:
            _write_line(f"error: {self.error}")
            return 1
        if self.full_content is None:
            _write_line("fullContent: <missing>")
            return 1
        joined = "".join(self.deltas)
        _write_line(f"fullContent chars: {len(self.full_content)}")
        _write_line(f"concat(content) == fullContent : {'YES' if joined == self.full_content else 'NO'}")
        return 0 if joined == self.full_content else 1


def _dump_sse_raw(
    *,
    base_url: str,
    model: str,
    message: str,
    api_key: str,
    secret_key: str | None,
    timeout_s: float,
) -> int:
    parsed = urlparse(base_url)
    scheme = (parsed.scheme or "http").lower()
    if scheme not in {"http", "https"}:
        sys.stderr.write(f"[error] unsupported base url scheme: {scheme}\n")
        return 2

    host = parsed.hostname or "localhost"
    port = parsed.port or (443 if scheme == "https" else 80)
    path = f"{parsed.path.rstrip('/')}/api/chat"

    body: dict[str, object] = {
        "model": model,
        "messages": [{"role": "user", "content": message}],
        "apiKey": api_key,
        "stream": True,
    }
    if secret_key:
        body["secretKey"] = secret_key

    headers = {"Accept": "text/event-stream", "Content-Type": "application/json"}
    conn_cls = HTTPSConnection if scheme == "https" else HTTPConnection
    conn = conn_cls(host, port, timeout=timeout_s)

    try:
        conn.request("POST", path, body=json.dumps(body).encode("utf-8"), headers=headers)
        resp = conn.getresponse()
    except OSError as e:
        sys.stderr.write(f"[error] SSE connect failed: {e}\n")
        return 2

    if resp.status != 200:
        sys.stderr.write(f"[error] relay answered {resp.status}\n")
        sys.stderr.buffer.write((resp.read(4096) or b"") + b"\n")
        return 2

    tally = FrameTally()
    buffer = b""
    while True:
        chunk = resp.read(4096)
        if not chunk:
            break
        buffer += chunk
        while b"\n" in buffer:
            line, buffer = buffer.split(b"\n", 1)
            if line.endswith(b"\r"):
                line = line[:-1]

            sys.stdout.buffer.write(line + b"\n")
            sys.stdout.buffer.flush()

            if line.startswith(b"data:"):
                tally.add(line[len(b"data:") :].lstrip())

    return tally.report()


def main() -> int:
    parser = argparse.ArgumentParser(description="Dump raw SSE lines for POST /api/chat.")
    parser.add_argument("--base-url", default="http://localhost:3001", help="relay base url, default http://localhost:3001")
    parser.add_argument("--model", default="gpt-3.5-turbo", help="model id from GET /api/models")
    parser.add_argument("--message", default="你好，请用一句话介绍你自己。", help="user message")
    parser.add_argument("--api-key", default=os.getenv("POLYCHAT_API_KEY", ""), help="vendor API key (env POLYCHAT_API_KEY)")
    parser.add_argument("--secret-key", default=os.getenv("POLYCHAT_SECRET_KEY"), help="Baidu secret key")
    parser.add_argument("--timeout-s", type=float, default=60.0, help="HTTP timeout seconds (default 60)")
    args = parser.parse_args()

    try:
        return _dump_sse_raw(
            base_url=str(args.base_url),
            model=str(args.model),
            message=str(args.message),
            api_key=str(args.api_key),
            secret_key=str(args.secret_key) if args.secret_key else None,
            timeout_s=float(args.timeout_s),
        )
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
