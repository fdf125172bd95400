"""阶段管线 — 驱动一次测试运行按固定顺序经过各阶段

阶段顺序: clean -> setVersion -> install -> test -> build -> verify

规则:
  - 进入阶段时置 running 并记录开始时间；操作返回后按 Outcome 置 passed / failed，
    记录结束时间与耗时。阶段内抛出的领域异常记为 failed，异常文本作为输出。
  - install 失败时不再进入 test / build / verify，它们保持 pending。
  - 每个阶段开始前检查取消标记，已取消则抛 RunCancelled，运行记为 cancelled。
    最后一个阶段执行期间（或 install 失败提前结束时）收到的取消同样记为 cancelled。
  - 库中库测试: setVersion 阶段内先把中间库完整跑一遍管线并 pack，
    再把产物引用写进下游应用的 package.json。中间库管线失败不阻止下游继续。

领域之外的异常（程序错误）不在这里吞掉，向上抛给队列作为致命错误处理。
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from datetime import datetime, timezone
from typing import Callable

from integmatrix.controllers import PackageManagerController
from integmatrix.core.config import Config
from integmatrix.core.events import PHASE_UPDATED, Event, EventSink
from integmatrix.core.exceptions import ExecutionError, IntegMatrixError, PackError, RunCancelled
from integmatrix.core.manifest import SET_VERSION_LABEL
from integmatrix.core.models import (
    FailureKind,
    Outcome,
    Phase,
    PhaseStatus,
    RunStatus,
    TestRun,
)
from integmatrix.core.plan import TestPlan
from integmatrix.utils.logger import RunLoggerAdapter, run_logger

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
PhaseOperation = Callable[[], Awaitable[Outcome]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CancelToken:
    """协作式取消标记，在阶段边界和运行结束时检查"""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self, phase_name: str) -> None:
        if self._cancelled:
            raise RunCancelled(f"阶段 {phase_name} 开始前已取消")


def _diagnostic(exc: BaseException) -> str:
    if isinstance(exc, ExecutionError) and exc.captured_output:
        return f"{exc}\n{exc.captured_output}"
    return str(exc) or type(exc).__name__


class PhasePipeline:
    """阶段状态机"""

    def __init__(
        self,
        config: Config,
        sink: EventSink | None = None,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self.config = config
        self.sink = sink
        self._clock = clock

    # ---- 入口 ----

    async def run(self, run: TestRun, plan: TestPlan, token: CancelToken) -> TestRun:
        """驱动 run 直到终态；程序错误向上抛出"""
        log = run_logger(logger, run.id)
        log.info("开始: %s (version=%s)", plan.describe(), run.version_override or "-")
        try:
            await self._drive(run, plan, token, log)
            if token.cancelled:
                raise RunCancelled(f"阶段 {run.current_phase or '-'} 执行期间已取消")
        except RunCancelled as e:
            log.warning("已取消: %s", e)
            run.error = str(e)
            run.complete(self._clock(), RunStatus.CANCELLED)
        else:
            run.complete(self._clock())
        log.info("结束: %s (失败阶段: %s)", run.status.value, run.failed_phases() or "-")
        return run

    async def _drive(
        self, run: TestRun, plan: TestPlan, token: CancelToken, log: RunLoggerAdapter,
    ) -> None:
        app = plan.app

        async def set_version() -> Outcome:
            if plan.library is None:
                return await app.set_dependency_version(
                    self.config.target_dependency, run.version_override,
                )
            return await self._prepare_library(run, plan, plan.library, token, log)

        await self._run_phase(run, "clean", app.clean, token, log)
        await self._run_phase(run, "setVersion", set_version, token, log)

        install = await self._run_phase(run, "install", app.install, token, log)
        if install.status == PhaseStatus.FAILED:
            log.warning("install 失败，跳过 test / build / verify")
            return

        await self._run_phase(run, "test", app.test, token, log)
        await self._run_phase(run, "build", app.build, token, log)
        await self._run_phase(run, "verify", lambda: self.verify_all(app), token, log)

    # ---- 单个阶段 ----

    async def _run_phase(
        self,
        run: TestRun,
        name: str,
        operation: PhaseOperation,
        token: CancelToken,
        log: RunLoggerAdapter,
    ) -> Phase:
        token.raise_if_cancelled(name)

        phase = run.phases[name]
        phase.start(self._clock())
        run.current_phase = name
        self._emit_phase(run, name)

        status, output = PhaseStatus.FAILED, ""
        try:
            outcome = await operation()
            status = PhaseStatus.PASSED if outcome.success else PhaseStatus.FAILED
            output = outcome.describe()
        except RunCancelled as e:
            output = str(e)
            raise
        except asyncio.CancelledError:
            # abort_in_flight: 进行中的命令已被终止
            task = asyncio.current_task()
            if task is not None:
                task.uncancel()
            output = f"阶段 {name} 执行中被中止"
            raise RunCancelled(output) from None
        except (IntegMatrixError, OSError) as e:
            output = _diagnostic(e)
        except Exception as e:
            output = f"内部错误: {e!r}"
            raise
        finally:
            phase.finish(status, output, self._clock())
            self._emit_phase(run, name)

        log.info("阶段 %s -> %s (%sms)", name, phase.status.value, phase.duration_ms)
        return phase

    def _emit_phase(self, run: TestRun, name: str) -> None:
        if self.sink is None:
            return
        self.sink.publish(Event(type=PHASE_UPDATED, data={
            "id": run.id,
            "phaseName": name,
            "phase": run.phases[name].to_dict(),
            "currentPhase": run.current_phase,
        }))

    # ---- verify ----

    async def verify_all(self, controller: PackageManagerController) -> Outcome:
        """按固定顺序校验关键依赖

        verify_fail_fast=True 时遇到第一个失败即停止，否则校验全部依赖。
        """
        lines: list[str] = []
        failures: list[Outcome] = []
        for dep in self.config.critical_dependencies:
            outcome = await controller.verify_single_dependency_version(dep)
            if outcome.success:
                lines.append(f"[OK]   {outcome.output}")
            else:
                lines.append(f"[FAIL] {outcome.describe()}")
                failures.append(outcome)
                if self.config.verify_fail_fast:
                    break

        if not failures:
            return Outcome.ok("verify", "\n".join(lines))
        first = failures[0]
        return Outcome.fail(
            "verify",
            f"依赖校验失败: {', '.join(f.label for f in failures)}",
            kind=first.kind or FailureKind.COMMAND_FAILURE,
            output="\n".join(lines),
            versions=first.versions,
        )

    # ---- 库中库 ----

    async def _prepare_library(
        self,
        run: TestRun,
        plan: TestPlan,
        library: PackageManagerController,
        token: CancelToken,
        log: RunLoggerAdapter,
    ) -> Outcome:
        """完整运行中间库管线，pack 后把产物注入下游应用"""
        lib_run = TestRun(
            id=f"{run.id}/library",
            test_name=f"{run.test_name} [library]",
            version_override=run.version_override,
            start_time=self._clock(),
        )
        child = PhasePipeline(self.config, sink=None, clock=self._clock)
        await child.run(lib_run, TestPlan(definition=plan.definition, app=library), token)
        if lib_run.status == RunStatus.CANCELLED:
            raise RunCancelled(lib_run.error or "库管线已取消")

        lines = [f"库 {library.project_dir}: {lib_run.status.value}"]
        for name, phase in lib_run.phases.items():
            lines.append(f"  {name}: {phase.status.value}")
            if phase.status == PhaseStatus.FAILED and phase.output:
                lines.extend(f"    {line}" for line in phase.output.splitlines())
        if lib_run.status == RunStatus.FAILED:
            log.warning("库管线失败 (%s)，继续处理下游应用", ", ".join(lib_run.failed_phases()))

        try:
            reference = await library.pack()
        except PackError as e:
            return Outcome.fail(
                SET_VERSION_LABEL, f"库 pack 失败: {e}",
                kind=FailureKind.PARSE_FAILURE, output="\n".join(lines),
            )
        except (ExecutionError, OSError) as e:
            lines.append(_diagnostic(e))
            return Outcome.fail(
                SET_VERSION_LABEL, f"库 pack 失败: {e}",
                kind=FailureKind.COMMAND_FAILURE, output="\n".join(lines),
            )
        lines.append(f"pack: {reference}")

        injected = await plan.app.set_dependency_version(self.config.library_package, reference)
        if injected.output:
            lines.append(injected.output)
        if not injected.success:
            return Outcome.fail(
                SET_VERSION_LABEL, injected.error or "注入库产物失败",
                kind=injected.kind or FailureKind.MANIFEST_FAILURE, output="\n".join(lines),
            )
        if self.config.strict_library_pipeline and lib_run.status == RunStatus.FAILED:
            return Outcome.fail(
                SET_VERSION_LABEL,
                f"库管线失败: {', '.join(lib_run.failed_phases())}",
                output="\n".join(lines),
            )
        return Outcome.ok(SET_VERSION_LABEL, "\n".join(lines))
