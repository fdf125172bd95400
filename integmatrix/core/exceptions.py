"""统一异常体系

所有业务异常继承 IntegMatrixError。
控制器将领域异常转换为失败的 Outcome，Web 层据 code 映射 HTTP 状态码，
CLI 层据此输出友好提示。
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from integmatrix.utils.shell import CommandResult


class IntegMatrixError(Exception):
    """框架基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(IntegMatrixError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(IntegMatrixError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = details or []


class TestNotFoundError(IntegMatrixError):
    """注册表中不存在指定的测试"""

    __test__ = False
    code = "TEST_NOT_FOUND"


class UnknownPackageManagerError(IntegMatrixError):
    """不支持的包管理器标识"""

    code = "UNKNOWN_PACKAGE_MANAGER"


class ExecutionError(IntegMatrixError):
    """外部命令以非零退出码结束"""

    code = "EXECUTION_ERROR"

    def __init__(self, message: str, result: CommandResult | None = None) -> None:
        super().__init__(message)
        self.result = result

    @property
    def captured_output(self) -> str:
        """合并后的 stdout + stderr，用于阶段输出"""
        if self.result is None:
            return ""
        return "\n".join(
            part.strip() for part in (self.result.stdout, self.result.stderr)
            if part and part.strip()
        )


class CommandTimeoutError(ExecutionError):
    """外部命令超时被终止"""

    code = "COMMAND_TIMEOUT"


class ManifestError(IntegMatrixError):
    """package.json 读写失败或目标依赖不存在"""

    code = "MANIFEST_ERROR"


class PackError(IntegMatrixError):
    """pack 输出无法解析出产物文件名"""

    code = "PACK_ERROR"


class RunCancelled(IntegMatrixError):
    """阶段开始前检测到取消请求"""

    code = "CANCELLED"
