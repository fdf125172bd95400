"""integmatrix 日志配置

统一的日志初始化，支持人类可读文本和结构化 JSON 两种输出。
管线内使用 run_logger() 把运行 ID 绑定到每条日志上，
多次运行的日志交错在一起时仍可按 run_id 过滤。
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import MutableMapping
from datetime import datetime, timezone
from typing import Any

TEXT_FORMAT = "%(asctime)s [%(levelname)-7s] %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """结构化 JSON 日志格式器，便于 CI 流水线消费

    输出字段: timestamp / level / logger / message / module / function / line，
    绑定了运行上下文时附加 run_id，有异常时附加 exception。
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            # 记录事件发生时间而非格式化时间
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        run_id = getattr(record, "run_id", None)
        if run_id:
            entry["run_id"] = run_id
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


class RunLoggerAdapter(logging.LoggerAdapter):
    """在消息前加 [run_id] 前缀，并把 run_id 写入 record 供 JSON 输出"""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any],
    ) -> tuple[Any, MutableMapping[str, Any]]:
        run_id = (self.extra or {}).get("run_id", "")
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("run_id", run_id)
        kwargs["extra"] = extra
        return f"[{run_id}] {msg}", kwargs


def run_logger(logger: logging.Logger, run_id: str) -> RunLoggerAdapter:
    """获取绑定了运行 ID 的 logger"""
    return RunLoggerAdapter(logger, {"run_id": run_id})


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """配置根日志器

    参数:
        level: 日志级别字符串（DEBUG, INFO, WARNING, ERROR）
        json_output: True 时输出 JSON（适用于 CI），否则输出文本

    说明:
        - 输出到 stderr，stdout 留给 CLI 的结果输出
        - 清理已有 handlers，重复调用不会重复输出
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if json_output else logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)
