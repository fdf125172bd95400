"""依赖版本唯一性校验

输入包管理器的依赖列表输出（按目标依赖过滤）与依赖名，
输出整个依赖图中该依赖的所有不同版本。

支持的输出形态:
  - yarn list --json: 每行一个事件，type=tree 的事件在 data.trees 下携带节点树，
    节点名为 "name@version"
  - 扁平节点列表: [{"name": "react@18.3.1", "children": [...]}, ...]
  - npm ls --json: 根对象下嵌套的 dependencies 映射 {name: {version, dependencies}}
  - pnpm list --json: 项目数组，每个项目带 dependencies / devDependencies /
    optionalDependencies 映射

整段输出不是合法 JSON 时逐行尽力解析，无法解析的行计入 skipped_lines 后跳过，
不携带树数据的行（yarn 的 info / warning 事件等）直接忽略。

另提供两个项目之间共有依赖的版本对比（compare_forests）。
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from integmatrix.core.models import FailureKind, Outcome
from integmatrix.utils.shell import CommandResult

logger = logging.getLogger(__name__)

DEPENDENCY_MAP_KEYS = ("dependencies", "devDependencies", "optionalDependencies")

_VERSION_PART_RE = re.compile(r"(\d+)")


# =========================================================================
# 节点模型
# =========================================================================


def split_name_version(spec: str) -> tuple[str, str | None]:
    """按最后一个 @ 拆分 "name@version"

    scoped 包名本身以 @ 开头，所以 "@scope/pkg@1.2.3" -> ("@scope/pkg", "1.2.3")，
    "@scope/pkg" -> ("@scope/pkg", None)。
    """
    name, sep, version = spec.rpartition("@")
    if not sep or not name:
        return spec, None
    return name, version or None


@dataclass(frozen=True)
class PackageNode:
    """依赖树节点，children 为该包自身的传递依赖"""

    name: str
    version: str | None = None
    children: tuple[PackageNode, ...] = ()


@dataclass
class Listing:
    """解析后的依赖森林"""

    forest: list[PackageNode] = field(default_factory=list)
    skipped_lines: int = 0

    @property
    def malformed(self) -> bool:
        """有输出但一棵树都没解析出来"""
        return self.skipped_lines > 0 and not self.forest


# =========================================================================
# 解析
# =========================================================================


def _best_effort_json_line(line: str) -> tuple[bool, Any]:
    """尽力解析单行 JSON，返回 (是否解析成功, 值)"""
    try:
        return True, json.loads(line)
    except json.JSONDecodeError:
        return False, None


def _nodes_from_name_tree(items: Iterable[Any]) -> list[PackageNode]:
    """yarn 风格: {"name": "pkg@ver", "children": [...]}"""
    nodes: list[PackageNode] = []
    for item in items:
        if not isinstance(item, dict) or not isinstance(item.get("name"), str):
            continue
        name, version = split_name_version(item["name"])
        children = _nodes_from_name_tree(item.get("children") or [])
        nodes.append(PackageNode(name=name, version=version, children=tuple(children)))
    return nodes


def _nodes_from_dependency_map(deps: Any) -> list[PackageNode]:
    """npm / pnpm 风格: {name: {"version": ..., "dependencies": {...}}}"""
    if not isinstance(deps, dict):
        return []
    nodes: list[PackageNode] = []
    for name, info in deps.items():
        if not isinstance(info, dict):
            continue
        version = info.get("version")
        children = _nodes_from_dependency_map(info.get("dependencies"))
        nodes.append(PackageNode(
            name=str(name),
            version=str(version) if version else None,
            children=tuple(children),
        ))
    return nodes


def _project_forest(project: dict[str, Any]) -> list[PackageNode]:
    forest: list[PackageNode] = []
    for key in DEPENDENCY_MAP_KEYS:
        forest.extend(_nodes_from_dependency_map(project.get(key)))
    return forest


def _forest_from_document(doc: Any) -> list[PackageNode]:
    """识别单个 JSON 文档的形态并转换为森林，无树数据时返回空列表"""
    if isinstance(doc, dict):
        if doc.get("type") == "tree":
            data = doc.get("data")
            trees = data.get("trees") if isinstance(data, dict) else None
            return _nodes_from_name_tree(trees or [])
        if "type" in doc and "data" in doc:
            # yarn 的 info / warning / activityStart 等事件
            return []
        return _project_forest(doc)

    if isinstance(doc, list):
        forest: list[PackageNode] = []
        for item in doc:
            if not isinstance(item, dict):
                continue
            if any(key in item for key in DEPENDENCY_MAP_KEYS):
                forest.extend(_project_forest(item))
            else:
                forest.extend(_nodes_from_name_tree([item]))
        return forest

    return []


def parse_listing(raw: str) -> Listing:
    """解析依赖列表输出；先整体解析，失败再按 JSON Lines 逐行解析"""
    text = (raw or "").strip()
    if not text:
        return Listing()

    parsed, doc = _best_effort_json_line(text)
    if parsed:
        return Listing(forest=_forest_from_document(doc))

    listing = Listing()
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        parsed, doc = _best_effort_json_line(line)
        if not parsed:
            listing.skipped_lines += 1
            continue
        listing.forest.extend(_forest_from_document(doc))
    return listing


# =========================================================================
# 遍历与判定
# =========================================================================


def _fold_versions(acc: set[str], node: PackageNode, target: str) -> set[str]:
    if node.name == target and node.version:
        acc.add(node.version)
    for child in node.children:
        _fold_versions(acc, child, target)
    return acc


def collect_versions(forest: Iterable[PackageNode], target: str) -> set[str]:
    """遍历整个森林（任意深度），收集名称与 target 完全相同的节点版本"""
    acc: set[str] = set()
    for node in forest:
        _fold_versions(acc, node, target)
    return acc


def version_sort_key(version: str) -> tuple:
    """数字段按数值比较，"10.0.0" 排在 "9.0.0" 之后"""
    return tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part)
        for part in _VERSION_PART_RE.split(version) if part
    )


def _sorted_versions(versions: set[str]) -> tuple[str, ...]:
    return tuple(sorted(versions, key=version_sort_key))


# =========================================================================
# 两个项目对比
# =========================================================================


@dataclass(frozen=True)
class VersionComparison:
    """两个项目共有依赖的版本对比结果"""

    name: str
    left: tuple[str, ...]
    right: tuple[str, ...]

    @property
    def same(self) -> bool:
        return self.left == self.right

    def describe(self) -> str:
        left = ", ".join(self.left) or "-"
        if self.same:
            return f"SAME {self.name}: {left}"
        return f"DIFF {self.name}: {left} vs {', '.join(self.right) or '-'}"


def compare_forests(
    left: Iterable[PackageNode], right: Iterable[PackageNode],
) -> list[VersionComparison]:
    """对比两个森林中顶层共有的依赖，按 left 的顶层顺序输出

    版本取该依赖在各自森林中出现过的全部版本。
    """
    left, right = list(left), list(right)
    right_names = {node.name for node in right}
    seen: set[str] = set()
    result: list[VersionComparison] = []
    for node in left:
        if node.name in seen or node.name not in right_names:
            continue
        seen.add(node.name)
        result.append(VersionComparison(
            name=node.name,
            left=_sorted_versions(collect_versions(left, node.name)),
            right=_sorted_versions(collect_versions(right, node.name)),
        ))
    return result


class DependencyVersionVerifier:
    """依赖版本唯一性判定

    0 个版本 -> 未安装（失败）；1 个 -> 通过；多个 -> 版本冲突（失败，版本排序后列出）
    """

    def installed_versions(self, raw: str, name: str) -> set[str]:
        return collect_versions(parse_listing(raw).forest, name)

    def verdict(self, name: str, versions: set[str], listing: Listing | None = None) -> Outcome:
        ordered = _sorted_versions(versions)
        if not ordered:
            msg = f"{name}: 未安装或无法识别出任何版本"
            if listing is not None and listing.skipped_lines:
                msg += f"（{listing.skipped_lines} 行输出无法解析）"
            return Outcome.fail(name, msg, kind=FailureKind.NOT_INSTALLED)
        if len(ordered) > 1:
            return Outcome.fail(
                name,
                f"{name}: 安装了多个版本: {', '.join(ordered)}",
                kind=FailureKind.VERSION_CONFLICT,
                versions=ordered,
            )
        return Outcome.ok(name, f"{name}: 单一版本 {ordered[0]}", versions=ordered)

    def verify(self, raw: str, name: str) -> Outcome:
        listing = parse_listing(raw)
        return self.verdict(name, collect_versions(listing.forest, name), listing)

    def verify_command(
        self,
        result: CommandResult,
        name: str,
        not_found_markers: Iterable[str] = (),
    ) -> Outcome:
        """根据列表命令的执行结果判定

        依赖缺失时列表命令本身可能非零退出，此时仍先解析已输出的部分；
        解析不出版本时，stderr 为空或命中 not-found 标记视为未安装，
        否则视为命令失败并附带 stderr。
        """
        listing = parse_listing(result.stdout)
        versions = collect_versions(listing.forest, name)
        if versions or result.success:
            outcome = self.verdict(name, versions, listing)
        else:
            stderr = result.stderr.strip()
            if not stderr or any(marker in stderr for marker in not_found_markers):
                outcome = self.verdict(name, versions, listing)
            else:
                outcome = Outcome.fail(
                    name,
                    f"{name}: 依赖列表命令失败 (rc={result.returncode})",
                    kind=FailureKind.COMMAND_FAILURE,
                    output=stderr,
                )
        logger.info("依赖校验 %s: %s", name, outcome.output if outcome.success else outcome.error)
        return outcome
