"""集中配置管理

统一的配置入口: 从 YAML 文件加载 + 编程式覆盖。
不提供模块级单例，Config 实例显式传入 ServiceContainer。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from integmatrix.core.exceptions import ConfigError
from integmatrix.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CRITICAL_DEPENDENCIES = [
    "recharts",
    "react",
    "react-dom",
    "react-redux",
    "@reduxjs/toolkit",
]


@dataclass
class Config:
    """全局配置"""

    # 目录
    root_dir: str = "."
    registry_file: str = "configs/tests.yml"
    libraries_dir: str = "libraries"
    apps_dir: str = "apps-3rd-party"

    # 被测依赖
    target_dependency: str = "recharts"
    library_package: str = "my-charts"   # 库中库测试里注入下游应用的中间库包名
    critical_dependencies: list[str] = field(
        default_factory=lambda: list(DEFAULT_CRITICAL_DEPENDENCIES),
    )

    # 执行
    env_passthrough: list[str] = field(default_factory=lambda: ["PATH", "CI"])
    process_timeout: int = 0             # 秒，0 表示不限
    verify_fail_fast: bool = True
    strict_library_pipeline: bool = False
    abort_in_flight: bool = False
    max_history: int = 200

    # Web API
    host: str = "127.0.0.1"
    port: int = 3001

    # 放不到字段里的配置项
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: str = "configs/default.yml") -> Config:
        """从 YAML 文件加载配置，不存在则返回默认"""
        try:
            data = load_yaml(path)
        except (yaml.YAMLError, ValueError) as e:
            raise ConfigError(f"配置文件无效: {path}: {e}") from e
        if not data:
            return cls()
        known = {f for f in cls.__dataclass_fields__}
        matched = {k: v for k, v in data.items() if k in known and k != "extra"}
        extra = {k: v for k, v in data.items() if k not in known}
        try:
            cfg = cls(**matched)
        except TypeError as e:
            raise ConfigError(f"配置文件无效: {path}: {e}") from e
        cfg.extra = extra
        logger.info("配置已加载: %s", path)
        return cfg

    @property
    def root(self) -> Path:
        return Path(self.root_dir).expanduser().resolve()

    def resolve(self, relative: str) -> Path:
        """相对 root_dir 解析路径，绝对路径原样返回"""
        p = Path(relative).expanduser()
        return p if p.is_absolute() else self.root / p

    @property
    def timeout(self) -> float | None:
        return float(self.process_timeout) if self.process_timeout > 0 else None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
