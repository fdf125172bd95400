"""Web API（基于 Flask）

提供: 测试矩阵查询、运行入队、运行状态 / 历史、取消、打包、SSE 事件流。
所有队列操作经 EngineThread 投递到后台事件循环执行。

启动方式: integmatrix serve --port 3001
"""

from __future__ import annotations

import logging

from flask import Flask, current_app, jsonify
from werkzeug.exceptions import HTTPException

from integmatrix.core.exceptions import IntegMatrixError
from integmatrix.services.engine import EngineThread
from integmatrix.web.responses import domain_error

logger = logging.getLogger(__name__)

ENGINE_KEY = "integmatrix.engine"


def current_engine() -> EngineThread:
    """当前应用绑定的引擎线程"""
    return current_app.extensions[ENGINE_KEY]


def create_app(engine: EngineThread) -> Flask:
    app = Flask(__name__)
    app.extensions[ENGINE_KEY] = engine

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc):
        """将所有 HTTP 异常统一返回 JSON"""
        return jsonify(error=exc.description), exc.code

    @app.errorhandler(IntegMatrixError)
    def handle_domain_error(exc):
        logger.warning("请求失败: %s: %s", exc.code, exc)
        return domain_error(exc)

    @app.errorhandler(Exception)
    def handle_generic_exception(exc):  # noqa: ARG001
        """捕获未处理异常，返回 500 JSON"""
        logger.exception("未处理的异常")
        return jsonify(error="服务器内部错误"), 500

    from integmatrix.web.routes import events_bp, pack_bp, runs_bp, tests_bp
    app.register_blueprint(tests_bp)
    app.register_blueprint(runs_bp)
    app.register_blueprint(pack_bp)
    app.register_blueprint(events_bp)
    return app


def run_server(engine: EngineThread, host: str = "127.0.0.1", port: int = 3001) -> None:
    app = create_app(engine)
    logger.info("integmatrix 服务已启动: http://%s:%d", host, port)
    # 单进程: 队列状态只存在于本进程的引擎线程中
    app.run(host=host, port=port, threaded=True)
