"""服务容器 — 统一依赖注入

同一容器内的实例共享状态（注册表、广播器、队列），不同容器之间互不影响，
测试里可以并存多个容器。不提供全局单例: CLI / Web 入口各自创建容器。

依赖关系图（→ 表示依赖）:
  resolver → registry, executor
  pipeline → broadcaster
  queue    → resolver, pipeline, broadcaster, packer

用法:
    cfg = Config.from_file("configs/default.yml")
    container = ServiceContainer(config=cfg)
    container.queue.enqueue("npm:integrations/ts-react18")   # 需在事件循环内
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from integmatrix.core.config import Config

if TYPE_CHECKING:
    from integmatrix.core.events import EventBroadcaster
    from integmatrix.core.pipeline import PhasePipeline
    from integmatrix.core.plan import PlanResolver
    from integmatrix.core.queue import ExecutionQueue
    from integmatrix.core.registry import TestRegistry
    from integmatrix.services.packer import DirectoryPacker
    from integmatrix.utils.shell import CommandExecutor

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器"""

    def __init__(
        self,
        config: Config | None = None,
        *,
        executor: CommandExecutor | None = None,
        registry: TestRegistry | None = None,
    ) -> None:
        self._config = config or Config()
        self._instances: dict[str, object] = {}
        if executor is not None:
            self._instances["executor"] = executor
        if registry is not None:
            self._instances["registry"] = registry

    @property
    def config(self) -> Config:
        return self._config

    @property
    def executor(self) -> CommandExecutor:
        if "executor" not in self._instances:
            from integmatrix.utils.shell import AsyncLocalExecutor
            self._instances["executor"] = AsyncLocalExecutor()
        return self._instances["executor"]  # type: ignore[return-value]

    @property
    def registry(self) -> TestRegistry:
        if "registry" not in self._instances:
            from integmatrix.core.registry import TestRegistry
            self._instances["registry"] = TestRegistry(
                self._config.resolve(self._config.registry_file),
            )
        return self._instances["registry"]  # type: ignore[return-value]

    @property
    def broadcaster(self) -> EventBroadcaster:
        if "broadcaster" not in self._instances:
            from integmatrix.core.events import EventBroadcaster
            self._instances["broadcaster"] = EventBroadcaster()
        return self._instances["broadcaster"]  # type: ignore[return-value]

    @property
    def resolver(self) -> PlanResolver:
        if "resolver" not in self._instances:
            from integmatrix.core.plan import PlanResolver
            self._instances["resolver"] = PlanResolver(
                self.registry, self._config, executor=self.executor,
            )
        return self._instances["resolver"]  # type: ignore[return-value]

    @property
    def pipeline(self) -> PhasePipeline:
        if "pipeline" not in self._instances:
            from integmatrix.core.pipeline import PhasePipeline
            self._instances["pipeline"] = PhasePipeline(self._config, sink=self.broadcaster)
        return self._instances["pipeline"]  # type: ignore[return-value]

    @property
    def packer(self) -> DirectoryPacker:
        if "packer" not in self._instances:
            from integmatrix.services.packer import DirectoryPacker
            self._instances["packer"] = DirectoryPacker(
                executor=self.executor,
                env_passthrough=self._config.env_passthrough,
                timeout=self._config.timeout,
            )
        return self._instances["packer"]  # type: ignore[return-value]

    @property
    def queue(self) -> ExecutionQueue:
        if "queue" not in self._instances:
            from integmatrix.core.queue import ExecutionQueue
            self._instances["queue"] = ExecutionQueue(
                self.resolver,
                self.pipeline,
                self.broadcaster,
                packer=self.packer,
                max_history=self._config.max_history,
                abort_in_flight=self._config.abort_in_flight,
            )
        return self._instances["queue"]  # type: ignore[return-value]
