"""integmatrix - 库集成测试矩阵编排工具"""

__version__ = "0.3.0"
