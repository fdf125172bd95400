"""执行队列 — 把并发的运行请求串行化

任意时刻最多只有一个 TestRun 由管线驱动: 同一项目目录会被 clean / install
反复改写，并发运行会互相破坏。

用法（必须在事件循环内调用）:
    queue = ExecutionQueue(resolver, pipeline, broadcaster)
    run_id = queue.enqueue("npm:integrations/ts-react18", "3.2.0")
    await queue.join()
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol

from integmatrix.core.events import (
    PACK_COMPLETED,
    PACK_FAILED,
    QUEUE_CLEARED,
    QUEUE_ENTRY_ADDED,
    RUN_COMPLETED,
    RUN_STARTED,
    Event,
    EventSink,
)
from integmatrix.core.exceptions import ConfigError, IntegMatrixError
from integmatrix.core.models import QueueEntry, RunStatus, TestRun
from integmatrix.core.pipeline import CancelToken, PhasePipeline, utcnow
from integmatrix.core.plan import TestPlan

logger = logging.getLogger(__name__)

# 打包本地目录，返回 file: 引用
Packer = Callable[[str], Awaitable[str]]


class Resolver(Protocol):
    def resolve(self, test_name: str) -> TestPlan:
        ...


@dataclass
class QueueStatus:
    pending: list[QueueEntry] = field(default_factory=list)
    active_run_id: str | None = None
    pack_directory: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pending": [e.to_dict() for e in self.pending],
            "activeRunId": self.active_run_id,
            "isRunning": self.active_run_id is not None,
            "queueLength": len(self.pending),
            "packDirectory": self.pack_directory,
        }


class ExecutionQueue:
    """FIFO 串行执行队列

    - enqueue 同步返回运行 ID，处理在后台任务中继续
    - 一次运行结束（任意终态）后自动开始下一个条目
    - cancel_all 清空待执行条目并通知进行中的运行取消
    - pack-first 模式: 下一个条目开始前先打包指定目录一次，
      产物引用应用到当时队列中的全部条目，然后退出该模式
    """

    def __init__(
        self,
        resolver: Resolver,
        pipeline: PhasePipeline,
        sink: EventSink | None = None,
        *,
        packer: Packer | None = None,
        max_history: int = 200,
        abort_in_flight: bool = False,
    ) -> None:
        self.resolver = resolver
        self.pipeline = pipeline
        self.sink = sink
        self.packer = packer
        self.max_history = max(1, max_history)
        self.abort_in_flight = abort_in_flight

        self._pending: deque[QueueEntry] = deque()
        self._runs: OrderedDict[str, TestRun] = OrderedDict()
        self._active: TestRun | None = None
        self._active_token: CancelToken | None = None
        self._active_task: asyncio.Task | None = None
        self._worker: asyncio.Task | None = None
        self._pack_directory: str | None = None

    # ---- 公共接口 ----

    def enqueue(self, test_name: str, version_override: str | None = None) -> str:
        """加入队列并立即返回运行 ID"""
        entry = QueueEntry(test_name=test_name, version_override=version_override or None)
        self._pending.append(entry)
        position = len(self._pending)
        logger.info("入队: %s (位置 %d, version=%s)", entry.id, position, version_override or "-")
        self._emit(QUEUE_ENTRY_ADDED, id=entry.id, testName=test_name, position=position)
        self._ensure_worker()
        return entry.id

    def cancel_all(self) -> int:
        """清空待执行条目并取消进行中的运行，返回被清掉的条目数"""
        cancelled = len(self._pending)
        self._pending.clear()
        self._pack_directory = None
        was_running = self._active is not None
        if self._active_token is not None:
            self._active_token.cancel()
        if self.abort_in_flight and self._active_task is not None:
            self._active_task.cancel()
        logger.warning("队列已清空: 取消 %d 个待执行条目, 进行中=%s", cancelled, was_running)
        self._emit(QUEUE_CLEARED, cancelledCount=cancelled, wasRunning=was_running)
        return cancelled

    def pack_first(self, directory: str) -> None:
        """下一个条目开始前先打包 directory，产物用于当时队列中的全部条目"""
        if self.packer is None:
            raise ConfigError("未配置 packer，无法使用 pack-first 模式")
        self._pack_directory = directory
        logger.info("pack-first 模式: %s", directory)

    def status(self) -> QueueStatus:
        return QueueStatus(
            pending=list(self._pending),
            active_run_id=self._active.id if self._active else None,
            pack_directory=self._pack_directory,
        )

    def get_run(self, run_id: str) -> TestRun | None:
        return self._runs.get(run_id)

    def runs(self) -> list[TestRun]:
        return list(self._runs.values())

    @property
    def idle(self) -> bool:
        return self._worker is None or self._worker.done()

    async def join(self) -> None:
        """等待队列处理完全部条目"""
        while self._worker is not None and not self._worker.done():
            await asyncio.wait({self._worker})

    # ---- 内部 ----

    def _emit(self, event_type: str, **data: Any) -> None:
        if self.sink is not None:
            self.sink.publish(Event(type=event_type, data=data))

    def _ensure_worker(self) -> None:
        if self.idle:
            self._worker = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while self._pending:
            if self._pack_directory is not None and self.packer is not None:
                await self._pack_pending(self._pack_directory, self.packer)
                continue
            entry = self._pending.popleft()
            task = asyncio.ensure_future(self._execute(entry))
            self._active_task = task
            try:
                # asyncio.wait 不会因为内部任务被取消而抛出
                await asyncio.wait({task})
            finally:
                self._active_task = None
            if task.cancelled():
                logger.warning("运行任务被中止: %s", entry.id)

    async def _pack_pending(self, directory: str, packer: Packer) -> None:
        try:
            reference = await packer(directory)
        except (IntegMatrixError, OSError) as e:
            logger.error("pack-first 打包失败: %s: %s", directory, e)
            self._emit(PACK_FAILED, directory=directory, error=str(e))
        else:
            applied = 0
            for entry in self._pending:
                entry.version_override = reference
                applied += 1
            logger.info("pack-first 产物 %s 已应用到 %d 个条目", reference, applied)
            self._emit(PACK_COMPLETED, directory=directory, reference=reference, applied=applied)
        finally:
            self._pack_directory = None

    async def _execute(self, entry: QueueEntry) -> TestRun:
        run = TestRun.from_entry(entry, utcnow())
        token = CancelToken()
        self._active, self._active_token = run, token
        self._remember(run)
        self._emit(RUN_STARTED, id=run.id, testName=run.test_name)
        try:
            plan = self.resolver.resolve(entry.test_name)
            await self.pipeline.run(run, plan, token)
        except IntegMatrixError as e:
            logger.error("运行 %s 无法开始: %s", run.id, e)
            run.error = str(e)
            run.complete(utcnow(), RunStatus.FAILED)
        except Exception as e:
            logger.exception("运行 %s 出现内部错误", run.id)
            run.error = f"内部错误: {e!r}"
            run.fatal = True
            run.complete(utcnow(), RunStatus.FAILED)
        finally:
            if not run.terminal:
                run.complete(utcnow(), RunStatus.CANCELLED)
            self._active, self._active_token = None, None
            self._emit(RUN_COMPLETED, id=run.id, status=run.status.value, exitCode=run.exit_code)
        return run

    def _remember(self, run: TestRun) -> None:
        self._runs[run.id] = run
        while len(self._runs) > self.max_history:
            oldest_id, oldest = next(iter(self._runs.items()))
            if not oldest.terminal:
                break
            del self._runs[oldest_id]
