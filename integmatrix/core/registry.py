"""测试注册表 — 所有集成测试元数据的唯一来源

YAML 文件结构:

    tests:                       # 显式定义的测试
      "npm:integrations/ts-react18":
        package_manager: npm
        kind: direct
        stability: stable
        integration_path: integrations/ts-react18
        dependencies: {react: "18"}

    library_matrix:              # 库中库测试按组合展开
      package_managers: [npm, yarn]
      stable: ["npm:my-charts-react18:app-react18"]
      combinations:
        - {library: my-charts-react18, app: app-react18, react: "18"}

展开后的库中库测试名为 "<pm>:<library>:<app>"。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from integmatrix.core.exceptions import ConfigError, TestNotFoundError, ValidationError
from integmatrix.core.models import (
    PackageManager,
    Stability,
    TestDefinition,
    TestKind,
)
from integmatrix.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)


class TestRegistry:
    """只读测试注册表"""

    __test__ = False
    section_key: str = "tests"
    matrix_key: str = "library_matrix"

    def __init__(self, registry_file: str | Path) -> None:
        self.registry_file = Path(registry_file)
        data = load_yaml(self.registry_file)
        self._tests: dict[str, TestDefinition] = {}
        try:
            for name, entry in (data.get(self.section_key) or {}).items():
                self._add(TestDefinition.from_dict(str(name), entry or {}))
            for definition in _expand_library_matrix(data.get(self.matrix_key) or {}):
                self._add(definition)
        except ValidationError as e:
            raise ConfigError(f"{self.registry_file}: {e} {e.details}") from e
        logger.info("注册表已加载: %s (%d 个测试)", self.registry_file, len(self._tests))

    @classmethod
    def from_definitions(cls, definitions: list[TestDefinition]) -> TestRegistry:
        """直接由定义列表构建（测试 / 编程式使用）"""
        reg = cls.__new__(cls)
        reg.registry_file = Path("<memory>")
        reg._tests = {}
        for d in definitions:
            reg._add(d)
        return reg

    def _add(self, definition: TestDefinition) -> None:
        if definition.name in self._tests:
            raise ValidationError(f"测试名重复: {definition.name}")
        self._tests[definition.name] = definition

    def lookup(self, test_name: str) -> TestDefinition | None:
        return self._tests.get(test_name)

    def get(self, test_name: str) -> TestDefinition:
        """获取测试定义，不存在时抛 TestNotFoundError"""
        definition = self.lookup(test_name)
        if definition is None:
            raise TestNotFoundError(f"未知测试: {test_name}")
        return definition

    def list_tests(
        self,
        *,
        stability: Stability | None = None,
        kind: TestKind | None = None,
        package_manager: PackageManager | None = None,
    ) -> list[TestDefinition]:
        result = list(self._tests.values())
        if stability is not None:
            result = [t for t in result if t.stability == stability]
        if kind is not None:
            result = [t for t in result if t.kind == kind]
        if package_manager is not None:
            result = [t for t in result if t.package_manager == package_manager]
        return sorted(result, key=lambda t: t.name)

    def list_names(self, stability: Stability | None = None) -> list[str]:
        return [t.name for t in self.list_tests(stability=stability)]

    def is_stable(self, test_name: str) -> bool:
        definition = self.lookup(test_name)
        return definition is not None and definition.stability == Stability.STABLE

    def __len__(self) -> int:
        return len(self._tests)


def _expand_library_matrix(matrix: dict[str, Any]) -> list[TestDefinition]:
    stable = set(matrix.get("stable") or [])
    result: list[TestDefinition] = []
    for pm in matrix.get("package_managers") or []:
        for combo in matrix.get("combinations") or []:
            name = f"{pm}:{combo.get('library', '')}:{combo.get('app', '')}"
            deps = {"react": str(combo["react"])} if combo.get("react") else {}
            result.append(TestDefinition.from_dict(name, {
                "package_manager": pm,
                "kind": TestKind.LIBRARY.value,
                "stability": (Stability.STABLE if name in stable else Stability.EXPERIMENTAL).value,
                "library_name": combo.get("library", ""),
                "app_name": combo.get("app", ""),
                "dependencies": deps,
            }))
    return result
