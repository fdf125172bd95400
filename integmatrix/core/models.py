"""核心数据模型

所有核心数据类集中定义，控制器 / 管线 / 队列统一从此处导入
Outcome / Phase / TestRun / QueueEntry / TestDefinition 及相关枚举。
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from integmatrix.core.exceptions import ValidationError

# =========================================================================
# 枚举
# =========================================================================


class PackageManager(str, Enum):
    """支持的包管理器"""
    NPM = "npm"
    YARN = "yarn"
    PNPM = "pnpm"


class TestKind(str, Enum):
    """测试类型"""
    __test__ = False
    DIRECT = "direct"      # 消费项目直接依赖被测库
    LIBRARY = "library"    # 库中库: 中间库 pack 后装进下游应用


class Stability(str, Enum):
    """稳定性: stable 的测试在 CI 中运行"""
    STABLE = "stable"
    EXPERIMENTAL = "experimental"


class PhaseStatus(str, Enum):
    """阶段状态"""
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"


class RunStatus(str, Enum):
    """测试运行整体状态"""
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FailureKind(str, Enum):
    """失败分类"""
    NOT_INSTALLED = "not_installed"
    VERSION_CONFLICT = "version_conflict"
    COMMAND_FAILURE = "command_failure"
    PARSE_FAILURE = "parse_failure"
    MANIFEST_FAILURE = "manifest_failure"


# 固定阶段顺序
PHASE_ORDER: tuple[str, ...] = ("clean", "setVersion", "install", "test", "build", "verify")


# =========================================================================
# 操作结果
# =========================================================================


@dataclass(frozen=True)
class Outcome:
    """单次控制器操作的结果

    不变量: success == (error is None)
    """

    label: str
    error: str | None = None
    output: str = ""
    kind: FailureKind | None = None
    versions: tuple[str, ...] = ()

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def ok(cls, label: str, output: str = "", versions: tuple[str, ...] = ()) -> Outcome:
        return cls(label=label, output=output, versions=versions)

    @classmethod
    def fail(
        cls,
        label: str,
        error: str,
        *,
        kind: FailureKind = FailureKind.COMMAND_FAILURE,
        output: str = "",
        versions: tuple[str, ...] = (),
    ) -> Outcome:
        if not error:
            raise ValueError("失败结果必须携带 error 描述")
        return cls(label=label, error=error, output=output, kind=kind, versions=versions)

    def describe(self) -> str:
        """阶段输出文本: 失败时 error 在前，捕获的命令输出在后"""
        if self.success:
            return self.output
        if self.output:
            return f"{self.error}\n{self.output}"
        return self.error or ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "success": self.success,
            "error": self.error,
            "output": self.output,
            "kind": self.kind.value if self.kind else None,
            "versions": list(self.versions),
        }


# =========================================================================
# 阶段 / 运行 / 队列条目
# =========================================================================


def _iso(ts: datetime | None) -> str | None:
    return ts.isoformat() if ts else None


@dataclass
class Phase:
    """管线中的单个阶段"""

    status: PhaseStatus = PhaseStatus.PENDING
    output: str = ""
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration_ms: int | None = None

    def start(self, now: datetime) -> None:
        self.status = PhaseStatus.RUNNING
        self.start_time = now

    def finish(self, status: PhaseStatus, output: str, now: datetime) -> None:
        self.status = status
        self.output = output
        # 时钟回拨时保证 end_time >= start_time
        if self.start_time is not None and now < self.start_time:
            now = self.start_time
        self.end_time = now
        if self.start_time is not None:
            delta = self.end_time - self.start_time
            self.duration_ms = int(delta.total_seconds() * 1000)

    @property
    def terminal(self) -> bool:
        return self.status in (PhaseStatus.PASSED, PhaseStatus.FAILED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "output": self.output,
            "startTime": _iso(self.start_time),
            "endTime": _iso(self.end_time),
            "durationMs": self.duration_ms,
        }


def new_run_id(test_name: str) -> str:
    """生成运行 ID: 测试名 + 随机后缀，快速连续入队也不会冲突"""
    return f"{test_name}-{uuid.uuid4().hex[:12]}"


@dataclass
class QueueEntry:
    """队列条目，出队执行时转换为 TestRun"""

    test_name: str
    version_override: str | None = None
    id: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            self.id = new_run_id(self.test_name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "testName": self.test_name,
            "versionOverride": self.version_override,
        }


@dataclass
class TestRun:
    """一次测试执行实例，仅由驱动它的 PhasePipeline 修改"""

    __test__ = False

    id: str
    test_name: str
    version_override: str | None = None
    status: RunStatus = RunStatus.RUNNING
    phases: dict[str, Phase] = field(
        default_factory=lambda: {name: Phase() for name in PHASE_ORDER},
    )
    current_phase: str = PHASE_ORDER[0]
    start_time: datetime | None = None
    end_time: datetime | None = None
    exit_code: int | None = None
    error: str = ""
    fatal: bool = False

    @classmethod
    def from_entry(cls, entry: QueueEntry, now: datetime) -> TestRun:
        return cls(
            id=entry.id,
            test_name=entry.test_name,
            version_override=entry.version_override,
            start_time=now,
        )

    @property
    def terminal(self) -> bool:
        return self.status != RunStatus.RUNNING

    def failed_phases(self) -> list[str]:
        return [n for n, p in self.phases.items() if p.status == PhaseStatus.FAILED]

    def complete(self, now: datetime, status: RunStatus | None = None) -> None:
        """进入终态；未指定 status 时按阶段结果推导"""
        if status is None:
            status = RunStatus.FAILED if self.failed_phases() else RunStatus.PASSED
        self.status = status
        self.exit_code = 0 if status == RunStatus.PASSED else 1
        self.end_time = now

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "testName": self.test_name,
            "versionOverride": self.version_override,
            "status": self.status.value,
            "phases": {name: p.to_dict() for name, p in self.phases.items()},
            "currentPhase": self.current_phase,
            "startTime": _iso(self.start_time),
            "endTime": _iso(self.end_time),
            "exitCode": self.exit_code,
            "error": self.error,
            "fatal": self.fatal,
        }


# =========================================================================
# 测试定义（注册表实体，只读）
# =========================================================================


@dataclass(frozen=True)
class TestDefinition:
    """注册表中的单个测试定义

    不变量:
      - kind=direct  时必须有 integration_path
      - kind=library 时必须同时有 library_name 和 app_name
    """

    __test__ = False

    name: str
    package_manager: PackageManager
    kind: TestKind = TestKind.DIRECT
    stability: Stability = Stability.EXPERIMENTAL
    integration_path: str = ""
    library_name: str = ""
    app_name: str = ""
    dependencies: dict[str, str] = field(default_factory=dict)
    description: str = ""

    def __post_init__(self) -> None:
        problems = self.problems()
        if problems:
            raise ValidationError(f"测试定义无效: {self.name}", details=problems)

    def problems(self) -> list[str]:
        errs: list[str] = []
        if self.kind == TestKind.DIRECT and not self.integration_path:
            errs.append("direct 测试缺少 integration_path")
        if self.kind == TestKind.LIBRARY:
            if not self.library_name:
                errs.append("library 测试缺少 library_name")
            if not self.app_name:
                errs.append("library 测试缺少 app_name")
        return errs

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> TestDefinition:
        """从注册表 YAML 条目构建，枚举值非法时抛 ValidationError"""
        try:
            pm = PackageManager(data.get("package_manager", ""))
            kind = TestKind(data.get("kind", TestKind.DIRECT.value))
            stability = Stability(data.get("stability", Stability.EXPERIMENTAL.value))
        except ValueError as e:
            raise ValidationError(f"测试定义无效: {name}", details=[str(e)]) from e
        return cls(
            name=name,
            package_manager=pm,
            kind=kind,
            stability=stability,
            integration_path=data.get("integration_path", "") or "",
            library_name=data.get("library_name", "") or "",
            app_name=data.get("app_name", "") or "",
            dependencies={str(k): str(v) for k, v in (data.get("dependencies") or {}).items()},
            description=(data.get("description") or "").strip(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "packageManager": self.package_manager.value,
            "kind": self.kind.value,
            "stability": self.stability.value,
            "integrationPath": self.integration_path or None,
            "libraryName": self.library_name or None,
            "appName": self.app_name or None,
            "dependencies": dict(self.dependencies),
            "description": self.description,
        }
