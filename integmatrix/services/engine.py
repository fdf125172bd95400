"""引擎线程 — 在后台线程中运行事件循环，桥接同步调用方

Flask 请求线程不能直接操作 asyncio 对象。所有对队列的读写都投递到
引擎线程的事件循环上执行，再把结果（已序列化为 dict）同步返回，
因此 TestRun 只会在事件循环线程中被读写。
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Awaitable, Callable, TypeVar

from integmatrix.services.container import ServiceContainer

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CALL_TIMEOUT = 30.0


class EngineThread:
    """持有一个事件循环和一个 ServiceContainer"""

    def __init__(self, container: ServiceContainer) -> None:
        self.container = container
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._ready = threading.Event()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> EngineThread:
        if self.running:
            return self
        self._ready.clear()
        self._thread = threading.Thread(target=self._run, name="integmatrix-engine", daemon=True)
        self._thread.start()
        self._ready.wait()
        logger.info("引擎线程已启动")
        return self

    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        self._ready.set()
        try:
            loop.run_forever()
        finally:
            loop.close()

    def stop(self, timeout: float = 5.0) -> None:
        thread = self._thread
        if self._loop is None or thread is None or not thread.is_alive():
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        thread.join(timeout)
        logger.info("引擎线程已停止")

    # ---- 跨线程调用 ----

    def call(self, fn: Callable[..., T], *args: Any, timeout: float | None = DEFAULT_CALL_TIMEOUT) -> T:
        """在事件循环线程中执行同步函数并返回结果"""
        async def _invoke() -> T:
            return fn(*args)
        return self.submit(_invoke, timeout=timeout)

    def submit(
        self,
        coro_fn: Callable[..., Awaitable[T]],
        *args: Any,
        timeout: float | None = DEFAULT_CALL_TIMEOUT,
    ) -> T:
        """在事件循环线程中执行协程函数并等待结果"""
        if self._loop is None or not self.running:
            raise RuntimeError("引擎线程未启动")
        future = asyncio.run_coroutine_threadsafe(coro_fn(*args), self._loop)
        return future.result(timeout)

    # ---- 队列操作 ----

    def enqueue(self, test_name: str, version_override: str | None = None) -> str:
        return self.call(self.container.queue.enqueue, test_name, version_override)

    def cancel_all(self) -> int:
        return self.call(self.container.queue.cancel_all)

    def pack_first(self, directory: str) -> None:
        self.call(self.container.queue.pack_first, directory)

    def pack(self, directory: str, package_manager: str | None = None, timeout: float | None = None) -> str:
        """立即打包目录（不经过队列），返回 file: 引用"""
        packer = self.container.packer
        if package_manager:
            from integmatrix.services.packer import DirectoryPacker
            cfg = self.container.config
            packer = DirectoryPacker(
                package_manager, self.container.executor,
                env_passthrough=cfg.env_passthrough,
                timeout=cfg.timeout,
            )
        return self.submit(packer, directory, timeout=timeout)

    def status(self) -> dict[str, Any]:
        return self.call(lambda: self.container.queue.status().to_dict())

    def get_run(self, run_id: str) -> dict[str, Any] | None:
        def _get() -> dict[str, Any] | None:
            run = self.container.queue.get_run(run_id)
            return run.to_dict() if run else None
        return self.call(_get)

    def runs(self) -> list[dict[str, Any]]:
        return self.call(lambda: [r.to_dict() for r in self.container.queue.runs()])
