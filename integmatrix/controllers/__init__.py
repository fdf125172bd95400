"""包管理器控制器

每种包管理器一个实现，get_controller() 按标识选择实现。
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from integmatrix.controllers.base import PackageManagerController
from integmatrix.controllers.npm import NpmController
from integmatrix.controllers.pnpm import PnpmController
from integmatrix.controllers.yarn import YarnController
from integmatrix.core.exceptions import UnknownPackageManagerError
from integmatrix.core.models import PackageManager

CONTROLLERS: dict[PackageManager, type[PackageManagerController]] = {
    PackageManager.NPM: NpmController,
    PackageManager.YARN: YarnController,
    PackageManager.PNPM: PnpmController,
}


def get_controller(
    package_manager: PackageManager | str,
    project_dir: str | Path,
    **kwargs: Any,
) -> PackageManagerController:
    """按包管理器标识创建控制器，未知标识抛 UnknownPackageManagerError"""
    try:
        pm = PackageManager(package_manager)
    except ValueError:
        raise UnknownPackageManagerError(f"不支持的包管理器: {package_manager}") from None
    return CONTROLLERS[pm](project_dir, **kwargs)


__all__ = [
    "CONTROLLERS",
    "NpmController",
    "PackageManagerController",
    "PnpmController",
    "YarnController",
    "get_controller",
]
