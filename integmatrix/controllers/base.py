"""包管理器控制器基类

每个控制器绑定一个项目目录，操作之间不保存状态（状态全在文件系统里）。
所有操作把命令失败 / 清单错误转换为失败的 Outcome，
只有 pack() 通过异常报告失败（它返回的是产物引用而非 Outcome）。
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path

from integmatrix.core.exceptions import ExecutionError
from integmatrix.core.manifest import MANIFEST_NAME, replace_dependency_version
from integmatrix.core.models import FailureKind, Outcome, PackageManager
from integmatrix.core.verifier import DependencyVersionVerifier, Listing, parse_listing
from integmatrix.utils.shell import (
    DEFAULT_ENV_PASSTHROUGH,
    AsyncLocalExecutor,
    CommandExecutor,
    CommandResult,
    build_env,
    run_checked,
)

logger = logging.getLogger(__name__)

LOCKFILES = ("package-lock.json", "yarn.lock", "pnpm-lock.yaml")
PACK_SUFFIX = ".tgz"


class PackageManagerController(ABC):
    """包管理器操作契约，子类只提供命令语法与输出解析"""

    package_manager: PackageManager

    def __init__(
        self,
        project_dir: str | Path,
        executor: CommandExecutor | None = None,
        *,
        env_passthrough: Iterable[str] = DEFAULT_ENV_PASSTHROUGH,
        timeout: float | None = None,
        verifier: DependencyVersionVerifier | None = None,
    ) -> None:
        self._project_dir = Path(project_dir).expanduser().resolve()
        self.executor = executor or AsyncLocalExecutor()
        self.env_passthrough = tuple(env_passthrough)
        self.timeout = timeout
        self.verifier = verifier or DependencyVersionVerifier()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self._project_dir)!r})"

    @property
    def project_dir(self) -> Path:
        return self._project_dir

    @property
    def manifest_path(self) -> Path:
        return self._project_dir / MANIFEST_NAME

    # ---- 命令执行 ----

    def env(self) -> dict[str, str]:
        return build_env(self.env_passthrough)

    async def _exec(self, args: list[str], label: str) -> CommandResult:
        return await run_checked(
            self.executor, args,
            cwd=str(self._project_dir), env=self.env(),
            timeout=self.timeout, label=label,
        )

    async def _run_step(self, label: str, args: list[str]) -> Outcome:
        try:
            await self._exec(args, label)
        except ExecutionError as e:
            return Outcome.fail(
                label, str(e),
                kind=FailureKind.COMMAND_FAILURE, output=e.captured_output,
            )
        except OSError as e:
            # 可执行文件不存在 / 目录不存在
            return Outcome.fail(label, f"{label}无法执行: {e}", kind=FailureKind.COMMAND_FAILURE)
        return Outcome.ok(label)

    # ---- 操作契约 ----

    async def clean(self) -> Outcome:
        """删除 node_modules、锁文件和之前的 pack 产物，目标不存在也算成功"""
        try:
            removed = await asyncio.to_thread(self._remove_install_state)
        except OSError as e:
            return Outcome.fail("clean", f"清理 {self._project_dir} 失败: {e}")
        logger.info("已清理 %s (%d 项)", self._project_dir, len(removed))
        return Outcome.ok("clean", "\n".join(removed))

    def _remove_install_state(self) -> list[str]:
        removed: list[str] = []
        node_modules = self._project_dir / "node_modules"
        if node_modules.is_dir():
            shutil.rmtree(node_modules)
            removed.append(str(node_modules))
        targets = [self._project_dir / name for name in LOCKFILES]
        if self._project_dir.is_dir():
            targets.extend(sorted(self._project_dir.glob(f"*{PACK_SUFFIX}")))
        for target in targets:
            if target.is_file():
                target.unlink()
                removed.append(str(target))
        return removed

    async def set_dependency_version(self, name: str, version: str | None) -> Outcome:
        return replace_dependency_version(self.manifest_path, name, version)

    async def install(self) -> Outcome:
        return await self._run_step("install", self.install_command())

    async def test(self) -> Outcome:
        return await self.run_script("test")

    async def build(self) -> Outcome:
        return await self.run_script("build")

    async def run_script(self, script: str) -> Outcome:
        """执行 package.json 中的脚本；未声明该脚本时视为成功"""
        return await self._run_step(script, self.script_command(script))

    async def pack(self) -> str:
        """打包并返回 file:<绝对路径> 引用

        异常:
            ExecutionError: pack 命令失败
            PackError: 输出中解析不出产物文件名
        """
        r = await self._exec(self.pack_command(), "pack")
        reference = self.parse_pack_output(r.stdout)
        logger.info("pack 完成: %s -> %s", self._project_dir, reference)
        return reference

    async def verify_single_dependency_version(self, name: str) -> Outcome:
        try:
            r = await self.executor.execute(
                self.list_command(name),
                cwd=str(self._project_dir), env=self.env(), timeout=self.timeout,
            )
        except ExecutionError as e:
            return Outcome.fail(name, str(e), kind=FailureKind.COMMAND_FAILURE)
        except OSError as e:
            return Outcome.fail(name, f"依赖列表命令无法执行: {e}", kind=FailureKind.COMMAND_FAILURE)
        return self.verifier.verify_command(r, name, self.not_found_markers(name))

    async def installed_tree(self) -> Listing:
        """列出已安装的顶层依赖

        异常:
            ExecutionError: 列表命令失败且没有可解析的输出
        """
        r = await self.executor.execute(
            self.tree_command(),
            cwd=str(self._project_dir), env=self.env(), timeout=self.timeout,
        )
        listing = parse_listing(r.stdout)
        if not listing.forest and not r.success:
            raise ExecutionError(f"依赖列表命令失败 (rc={r.returncode}): {self._project_dir}", r)
        return listing

    # ---- 子类提供 ----

    @abstractmethod
    def install_command(self) -> list[str]:
        """安装命令"""

    @abstractmethod
    def script_command(self, script: str) -> list[str]:
        """执行脚本的命令（脚本不存在时不报错）"""

    @abstractmethod
    def pack_command(self) -> list[str]:
        """打包命令"""

    @abstractmethod
    def parse_pack_output(self, stdout: str) -> str:
        """从 pack 的 stdout 中解析出 file: 引用"""

    @abstractmethod
    def list_command(self, name: str) -> list[str]:
        """按依赖名过滤的依赖树列表命令（JSON 输出）"""

    @abstractmethod
    def tree_command(self) -> list[str]:
        """顶层依赖列表命令（JSON 输出）"""

    def not_found_markers(self, name: str) -> tuple[str, ...]:
        """列表命令 stderr 中表示「依赖不存在」的标记"""
        return ()
