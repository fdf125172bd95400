"""本地目录打包 — build 后 pack，返回 file: 引用

用于 pack-first 模式和 /api/pack: 先打包被测库的本地构建，
再把产物引用作为版本注入队列中的测试。
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from integmatrix.controllers import get_controller
from integmatrix.core.exceptions import ExecutionError
from integmatrix.core.models import PackageManager
from integmatrix.utils.shell import DEFAULT_ENV_PASSTHROUGH, CommandExecutor

logger = logging.getLogger(__name__)


class DirectoryPacker:
    """可调用对象，符合 ExecutionQueue 的 Packer 签名"""

    def __init__(
        self,
        package_manager: PackageManager | str = PackageManager.NPM,
        executor: CommandExecutor | None = None,
        *,
        env_passthrough: Iterable[str] = DEFAULT_ENV_PASSTHROUGH,
        timeout: float | None = None,
    ) -> None:
        self.package_manager = package_manager
        self.executor = executor
        self.env_passthrough = tuple(env_passthrough)
        self.timeout = timeout

    async def __call__(self, directory: str) -> str:
        """build + pack，失败抛 ExecutionError / PackError"""
        project_dir = Path(directory).expanduser()
        controller = get_controller(
            self.package_manager, project_dir,
            executor=self.executor,
            env_passthrough=self.env_passthrough,
            timeout=self.timeout,
        )
        logger.info("打包本地目录: %s (%s)", controller.project_dir, controller.package_manager.value)
        built = await controller.build()
        if not built.success:
            raise ExecutionError(f"{controller.project_dir} build 失败: {built.describe()}")
        return await controller.pack()
