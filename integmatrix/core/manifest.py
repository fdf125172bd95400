"""package.json 读写与 pack 产物引用

改写时只替换目标字段，其余内容与键顺序保持不变，
输出 2 空格缩进，保留原文件末尾换行，方便 diff。
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from integmatrix.core.exceptions import ManifestError
from integmatrix.core.models import FailureKind, Outcome
from integmatrix.utils.yaml_io import atomic_write

logger = logging.getLogger(__name__)

MANIFEST_NAME = "package.json"
DEPENDENCY_SECTIONS = ("dependencies", "peerDependencies")
SET_VERSION_LABEL = "setVersion"


def read_manifest(path: Path) -> dict[str, Any]:
    """读取 package.json，文件缺失或内容无效时抛 ManifestError"""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ManifestError(f"未找到 {path}") from e
    except (OSError, json.JSONDecodeError) as e:
        raise ManifestError(f"读取 {path} 失败: {e}") from e
    if not isinstance(data, dict):
        raise ManifestError(f"{path} 顶层不是 JSON 对象")
    return data


def write_manifest(path: Path, data: dict[str, Any], *, trailing_newline: bool = True) -> None:
    content = json.dumps(data, indent=2, ensure_ascii=False)
    if trailing_newline:
        content += "\n"
    try:
        atomic_write(path, content)
    except OSError as e:
        raise ManifestError(f"写入 {path} 失败: {e}") from e


def has_script(manifest: dict[str, Any], script: str) -> bool:
    scripts = manifest.get("scripts")
    return isinstance(scripts, dict) and bool(scripts.get(script))


def replace_dependency_version(manifest_path: Path, name: str, version: str | None) -> Outcome:
    """把 dependencies / peerDependencies 中的 name 改为 version

    version 为空时保持原声明，直接成功；两个段都没有 name 时失败。
    """
    if not version:
        return Outcome.ok(SET_VERSION_LABEL, "未指定版本，保持 package.json 原有声明")

    try:
        raw = manifest_path.read_text(encoding="utf-8")
        data = read_manifest(manifest_path)
    except OSError as e:
        return Outcome.fail(
            SET_VERSION_LABEL, f"读取 {manifest_path} 失败: {e}",
            kind=FailureKind.MANIFEST_FAILURE,
        )
    except ManifestError as e:
        return Outcome.fail(SET_VERSION_LABEL, str(e), kind=FailureKind.MANIFEST_FAILURE)

    replaced: list[str] = []
    for section in DEPENDENCY_SECTIONS:
        deps = data.get(section)
        if isinstance(deps, dict) and name in deps:
            logger.info("替换 %s 的 %s: %s -> %s", manifest_path, section, name, version)
            deps[name] = version
            replaced.append(section)

    if not replaced:
        msg = f"{manifest_path} 中未找到依赖 {name}"
        logger.error(msg)
        return Outcome.fail(SET_VERSION_LABEL, msg, kind=FailureKind.MANIFEST_FAILURE)

    try:
        write_manifest(manifest_path, data, trailing_newline=raw.endswith("\n"))
    except ManifestError as e:
        return Outcome.fail(SET_VERSION_LABEL, str(e), kind=FailureKind.MANIFEST_FAILURE)
    return Outcome.ok(SET_VERSION_LABEL, f"{name}@{version} ({', '.join(replaced)})")


def artifact_reference(project_dir: Path, tarball: str) -> str:
    """pack 产物文件名 -> package.json 可用的 file: 引用（绝对路径）"""
    tarball = tarball.strip()
    p = Path(tarball)
    if not p.is_absolute():
        p = project_dir / p
    return f"file:{p}"
