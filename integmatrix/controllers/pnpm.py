"""pnpm 控制器"""

from __future__ import annotations

from integmatrix.controllers.base import PackageManagerController
from integmatrix.controllers.npm import last_tarball_line
from integmatrix.core.manifest import artifact_reference
from integmatrix.core.models import PackageManager


class PnpmController(PackageManagerController):
    package_manager = PackageManager.PNPM

    def install_command(self) -> list[str]:
        return ["pnpm", "install"]

    def script_command(self, script: str) -> list[str]:
        return ["pnpm", "run", "--if-present", script]

    def pack_command(self) -> list[str]:
        return ["pnpm", "pack"]

    def parse_pack_output(self, stdout: str) -> str:
        # 新版 pnpm 输出绝对路径，旧版只输出文件名
        return artifact_reference(self.project_dir, last_tarball_line(stdout))

    def list_command(self, name: str) -> list[str]:
        return ["pnpm", "list", name, "--json", "--depth", "999"]

    def tree_command(self) -> list[str]:
        return ["pnpm", "list", "--json"]
