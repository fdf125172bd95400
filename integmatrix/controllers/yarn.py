"""yarn (v1) 控制器

与 npm / pnpm 的差异:
  - yarn run 没有 --if-present，需要先读 package.json 判断脚本是否声明
  - 同名但内容不同的 pack 产物会命中 yarn 缓存，clean 时一并清理缓存
  - pack / list 的 --json 输出是 JSON Lines 事件流
"""

from __future__ import annotations

import json
import logging
import re

from integmatrix.controllers.base import PackageManagerController
from integmatrix.core.exceptions import ExecutionError, ManifestError, PackError
from integmatrix.core.manifest import artifact_reference, has_script, read_manifest
from integmatrix.core.models import FailureKind, Outcome, PackageManager

logger = logging.getLogger(__name__)

_TARBALL_RE = re.compile(r'"(.+\.tgz)"')


class YarnController(PackageManagerController):
    package_manager = PackageManager.YARN

    async def clean(self) -> Outcome:
        outcome = await super().clean()
        if not outcome.success:
            return outcome
        try:
            await self._exec(["yarn", "cache", "clean"], "yarn cache clean")
        except ExecutionError as e:
            return Outcome.fail("clean", str(e), output=e.captured_output)
        except OSError as e:
            return Outcome.fail("clean", f"yarn cache clean 无法执行: {e}")
        return outcome

    async def run_script(self, script: str) -> Outcome:
        try:
            manifest = read_manifest(self.manifest_path)
        except ManifestError as e:
            return Outcome.fail(script, str(e), kind=FailureKind.MANIFEST_FAILURE)
        if not has_script(manifest, script):
            logger.info("%s 未声明 '%s' 脚本，跳过 yarn run %s", self.project_dir, script, script)
            return Outcome.ok(script, f"未声明 '{script}' 脚本")
        return await self._run_step(script, self.script_command(script))

    def install_command(self) -> list[str]:
        return ["yarn", "install"]

    def script_command(self, script: str) -> list[str]:
        return ["yarn", "run", script]

    def pack_command(self) -> list[str]:
        return ["yarn", "pack", "--json"]

    def parse_pack_output(self, stdout: str) -> str:
        """从 {"type": "success", "data": "Wrote tarball to \\"/abs/x.tgz\\"."} 中取路径"""
        for line in stdout.splitlines():
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(event, dict) or event.get("type") != "success":
                continue
            match = _TARBALL_RE.search(str(event.get("data", "")))
            if match:
                return artifact_reference(self.project_dir, match.group(1))
        raise PackError(f"无法从 yarn pack 输出中解析产物路径: {stdout.strip()[-500:]!r}")

    def list_command(self, name: str) -> list[str]:
        return ["yarn", "list", "--pattern", name, "--json", "--no-progress"]

    def tree_command(self) -> list[str]:
        return ["yarn", "list", "--depth=0", "--json", "--no-progress"]

    def not_found_markers(self, name: str) -> tuple[str, ...]:
        return (
            f'Package "{name}" not found',
            f'pattern "{name}" did not match any packages',
        )
