"""测试计划解析

测试名 -> 注册表定义 -> 一个（直接依赖测试）或两个（库中库测试）控制器。
未知测试名直接失败，不根据名字猜测测试形态。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from integmatrix.controllers import PackageManagerController, get_controller
from integmatrix.core.config import Config
from integmatrix.core.models import PackageManager, TestDefinition, TestKind
from integmatrix.core.registry import TestRegistry
from integmatrix.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)

ControllerFactory = Callable[[PackageManager, Path], PackageManagerController]


@dataclass
class TestPlan:
    """解析后的执行计划

    direct:  app 为唯一的消费项目，library 为 None
    library: library 先完整跑一遍并 pack，产物注入 app
    """

    __test__ = False

    definition: TestDefinition
    app: PackageManagerController
    library: PackageManagerController | None = None

    @property
    def kind(self) -> TestKind:
        return self.definition.kind

    def describe(self) -> str:
        if self.library is None:
            return f"{self.definition.name}: {self.app.project_dir}"
        return f"{self.definition.name}: {self.library.project_dir} -> {self.app.project_dir}"


class PlanResolver:
    """按注册表把测试名解析为 TestPlan"""

    def __init__(
        self,
        registry: TestRegistry,
        config: Config,
        *,
        executor: CommandExecutor | None = None,
        controller_factory: ControllerFactory | None = None,
    ) -> None:
        self.registry = registry
        self.config = config
        self._executor = executor
        self._factory = controller_factory or self._default_factory

    def _default_factory(self, pm: PackageManager, project_dir: Path) -> PackageManagerController:
        return get_controller(
            pm, project_dir,
            executor=self._executor,
            env_passthrough=self.config.env_passthrough,
            timeout=self.config.timeout,
        )

    def resolve(self, test_name: str) -> TestPlan:
        """解析测试名，未知测试抛 TestNotFoundError"""
        definition = self.registry.get(test_name)
        pm = definition.package_manager

        if definition.kind == TestKind.DIRECT:
            app_dir = self.config.resolve(definition.integration_path)
            plan = TestPlan(definition=definition, app=self._factory(pm, app_dir))
        else:
            lib_dir = self.config.resolve(self.config.libraries_dir) / definition.library_name
            app_dir = self.config.resolve(self.config.apps_dir) / definition.app_name
            plan = TestPlan(
                definition=definition,
                app=self._factory(pm, app_dir),
                library=self._factory(pm, lib_dir),
            )

        logger.info("测试计划: %s", plan.describe())
        return plan
