"""Web 层统一响应辅助函数"""

from __future__ import annotations

from flask import Response, jsonify

from integmatrix.core.exceptions import IntegMatrixError

# 异常 code -> HTTP 状态码，未列出的按 500 处理
ERROR_STATUS: dict[str, int] = {
    "TEST_NOT_FOUND": 404,
    "VALIDATION_ERROR": 400,
    "UNKNOWN_PACKAGE_MANAGER": 400,
    "CONFIG_ERROR": 400,
    "EXECUTION_ERROR": 502,
    "COMMAND_TIMEOUT": 504,
    "PACK_ERROR": 502,
}


def ok(data: dict, status: int = 200) -> tuple[Response, int] | Response:
    """成功响应"""
    if status == 200:
        return jsonify(data)
    return jsonify(data), status


def not_found(resource: str) -> tuple[Response, int]:
    """资源不存在"""
    return jsonify(error=f"{resource}不存在"), 404


def bad_request(message: str) -> tuple[Response, int]:
    """请求参数错误"""
    return jsonify(error=message), 400


def domain_error(exc: IntegMatrixError) -> tuple[Response, int]:
    """业务异常按 code 映射状态码"""
    return jsonify(error=str(exc), code=exc.code), ERROR_STATUS.get(exc.code, 500)
