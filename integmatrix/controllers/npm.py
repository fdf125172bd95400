"""npm 控制器"""

from __future__ import annotations

from integmatrix.controllers.base import PACK_SUFFIX, PackageManagerController
from integmatrix.core.exceptions import PackError
from integmatrix.core.manifest import artifact_reference
from integmatrix.core.models import PackageManager


def last_tarball_line(stdout: str) -> str:
    """npm / pnpm pack 的产物文件名在 stdout 最后一个非空行"""
    lines = [line.strip() for line in stdout.splitlines() if line.strip()]
    if not lines or not lines[-1].endswith(PACK_SUFFIX):
        raise PackError(f"无法从 pack 输出中解析产物文件名: {stdout.strip()[-500:]!r}")
    return lines[-1]


class NpmController(PackageManagerController):
    package_manager = PackageManager.NPM

    def install_command(self) -> list[str]:
        return ["npm", "install"]

    def script_command(self, script: str) -> list[str]:
        return ["npm", "run", script, "--if-present"]

    def pack_command(self) -> list[str]:
        return ["npm", "pack"]

    def parse_pack_output(self, stdout: str) -> str:
        return artifact_reference(self.project_dir, last_tarball_line(stdout))

    def list_command(self, name: str) -> list[str]:
        return ["npm", "ls", name, "--json"]

    def tree_command(self) -> list[str]:
        return ["npm", "ls", "--json"]
