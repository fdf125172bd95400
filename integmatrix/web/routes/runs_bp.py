"""运行历史 / 队列 Blueprint"""

from __future__ import annotations

import logging

from flask import Blueprint

from integmatrix.web.app import current_engine
from integmatrix.web.responses import ok

logger = logging.getLogger(__name__)

runs_bp = Blueprint("runs", __name__, url_prefix="/api")


@runs_bp.route("/runs", methods=["GET"])
def api_runs():
    """全部运行（含历史）和队列状态，供错过事件的客户端同步"""
    engine = current_engine()
    return ok({"runs": engine.runs(), "queue": engine.status()})


@runs_bp.route("/queue", methods=["GET"])
def api_queue():
    return ok(current_engine().status())


@runs_bp.route("/tests/cancel", methods=["POST"])
def api_cancel():
    """清空队列并取消进行中的运行"""
    engine = current_engine()
    was_running = engine.status()["isRunning"]
    cancelled = engine.cancel_all()
    logger.info("收到取消请求: %d 个待执行条目", cancelled)
    return ok({"cancelledCount": cancelled, "wasRunning": was_running})
