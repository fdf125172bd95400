"""外部命令执行工具 — 统一的异步子进程调用

通过 CommandExecutor 协议抽象子进程执行，控制器只依赖协议，
测试时注入假执行器即可，无需 patch asyncio.create_subprocess_exec。
命令一律以 argv 列表传入，不经过 shell。
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from integmatrix.core.exceptions import CommandTimeoutError, ExecutionError

logger = logging.getLogger(__name__)

# corepack 自动 pin / 严格模式会改写 package.json，固定关闭
COREPACK_ENV: dict[str, str] = {
    "COREPACK_ENABLE_AUTO_PIN": "0",
    "COREPACK_ENABLE_STRICT": "0",
}

DEFAULT_ENV_PASSTHROUGH: tuple[str, ...] = ("PATH", "CI")


# =========================================================================
# 命令执行结果
# =========================================================================

@dataclass
class CommandResult:
    """命令执行结果（与 asyncio.subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


# =========================================================================
# 命令执行器协议
# =========================================================================

class CommandExecutor(Protocol):
    """命令执行器协议

    实现此协议即可替换底层执行方式，测试时注入 mock 实现。
    """

    async def execute(
        self,
        args: list[str],
        *,
        cwd: str,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """执行命令并返回结果，非零退出码不抛异常"""
        ...


# =========================================================================
# 默认实现: 本地异步执行器
# =========================================================================

class AsyncLocalExecutor:
    """本地子进程执行器（默认实现）

    stdout / stderr 并发读取，避免管道写满导致子进程阻塞。
    超时或所在任务被取消时先 kill 子进程再向上抛出。
    """

    async def execute(
        self,
        args: list[str],
        *,
        cwd: str,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        logger.info("  执行: %s (cwd=%s)", " ".join(args), cwd)
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=cwd,
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=timeout or None,
            )
        except asyncio.TimeoutError:
            await _kill(process)
            raise CommandTimeoutError(
                f"命令超时（{timeout}秒）: {' '.join(args)}",
            ) from None
        except asyncio.CancelledError:
            await _kill(process)
            raise

        return CommandResult(
            returncode=process.returncode or 0,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()


# =========================================================================
# 环境变量与便捷函数
# =========================================================================

def build_env(
    passthrough: Iterable[str] = DEFAULT_ENV_PASSTHROUGH,
    source: dict[str, str] | None = None,
) -> dict[str, str]:
    """按白名单构造子进程环境，不整体继承当前进程环境

    参数:
        passthrough: 允许从 source 继承的变量名
        source: 变量来源，默认 os.environ
    """
    src = os.environ if source is None else source
    env = {k: src[k] for k in passthrough if k in src}
    env.update(COREPACK_ENV)
    return env


async def run_checked(
    executor: CommandExecutor,
    args: list[str],
    *,
    cwd: str,
    env: dict[str, str] | None = None,
    timeout: float | None = None,
    label: str = "cmd",
) -> CommandResult:
    """执行命令，非零退出码抛 ExecutionError（携带完整结果）"""
    r = await executor.execute(args, cwd=cwd, env=env, timeout=timeout)
    if not r.success:
        raise ExecutionError(f"{label}失败 (rc={r.returncode}): {' '.join(args)}", result=r)
    return r
