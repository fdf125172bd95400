"""打包 Blueprint

POST /api/pack
    {"directory": "...", "packageManager": "npm"}          立即 build + pack，返回 file: 引用
    {"directory": "...", "queue": true}                    pack-first: 下一个条目开始前打包，
                                                           产物应用到当时队列中的全部测试
"""

from __future__ import annotations

import logging
from pathlib import Path

from flask import Blueprint, request

from integmatrix.core.models import PackageManager
from integmatrix.web.app import current_engine
from integmatrix.web.responses import bad_request, ok

logger = logging.getLogger(__name__)

pack_bp = Blueprint("pack", __name__, url_prefix="/api")


@pack_bp.route("/pack", methods=["POST"])
def api_pack():
    body = request.get_json(silent=True) or {}
    directory = str(body.get("directory", "")).strip()
    if not directory:
        return bad_request("需要提供 directory")
    if not Path(directory).expanduser().is_dir():
        return bad_request(f"目录不存在: {directory}")
    pm = body.get("packageManager") or None
    if pm is not None and pm not in {p.value for p in PackageManager}:
        return bad_request(f"不支持的包管理器: {pm}")

    engine = current_engine()
    if body.get("queue"):
        engine.pack_first(directory)
        return ok({"packDirectory": directory, "status": "scheduled"}, 202)

    reference = engine.pack(directory, pm)
    logger.info("打包完成: %s -> %s", directory, reference)
    return ok({"directory": directory, "reference": reference})
