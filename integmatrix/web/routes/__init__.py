"""Web 路由模块 - Blueprint 集合

- tests_bp.py:  测试矩阵查询、运行入队、单次运行查询
- runs_bp.py:   运行历史、队列状态、取消
- pack_bp.py:   本地目录打包
- events_bp.py: SSE 事件流
"""

from integmatrix.web.routes.events_bp import events_bp
from integmatrix.web.routes.pack_bp import pack_bp
from integmatrix.web.routes.runs_bp import runs_bp
from integmatrix.web.routes.tests_bp import tests_bp

__all__ = [
    "tests_bp",
    "runs_bp",
    "pack_bp",
    "events_bp",
]
