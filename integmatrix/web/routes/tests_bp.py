"""测试矩阵 Blueprint

职责:
- 测试列表（可按稳定性 / 类型 / 包管理器过滤）
- 运行入队
- 单次运行查询
"""

from __future__ import annotations

import logging

from flask import Blueprint, request

from integmatrix.core.models import PackageManager, Stability, TestKind
from integmatrix.web.app import current_engine
from integmatrix.web.responses import bad_request, not_found, ok

logger = logging.getLogger(__name__)

tests_bp = Blueprint("tests", __name__, url_prefix="/api/tests")


@tests_bp.route("", methods=["GET"])
def api_list_tests():
    """列出测试；?ci=1 只返回 stable，?pm= / ?kind= 过滤"""
    args = request.args
    try:
        pm = PackageManager(args["pm"]) if args.get("pm") else None
        kind = TestKind(args["kind"]) if args.get("kind") else None
    except ValueError as e:
        return bad_request(f"过滤参数无效: {e}")
    stability = Stability.STABLE if args.get("ci") in ("1", "true") else None

    registry = current_engine().container.registry
    tests = registry.list_tests(stability=stability, kind=kind, package_manager=pm)
    return ok({"tests": [t.to_dict() for t in tests], "total": len(tests)})


@tests_bp.route("/run", methods=["POST"])
def api_run_test():
    """入队一个测试: {"testName": ..., "version": ...}，立即返回运行 ID"""
    body = request.get_json(silent=True) or {}
    test_name = str(body.get("testName", "")).strip()
    if not test_name:
        return bad_request("需要提供 testName")
    version = body.get("version")
    if version is not None and not isinstance(version, str):
        return bad_request("version 必须是字符串")

    engine = current_engine()
    # 未知测试在入队前直接拒绝（TestNotFoundError -> 404）
    engine.container.registry.get(test_name)
    run_id = engine.enqueue(test_name, version or None)
    return ok({"id": run_id, "testName": test_name, "status": "queued"}, 202)


@tests_bp.route("/<path:run_id>", methods=["GET"])
def api_get_run(run_id: str):
    """查询单次运行的完整状态"""
    run = current_engine().get_run(run_id)
    if run is None:
        return not_found(f"运行 {run_id} ")
    return ok(run)
