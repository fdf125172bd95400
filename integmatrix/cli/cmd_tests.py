"""CLI — 测试矩阵查询"""

from __future__ import annotations

import json

import click

from integmatrix.cli import _svc
from integmatrix.core.exceptions import IntegMatrixError
from integmatrix.core.models import PackageManager, Stability, TestKind


def register(group: click.Group) -> None:
    group.add_command(list_tests)


@click.command(name="list")
@click.option("--ci", is_flag=True, help="只列出 CI 中运行的 stable 测试")
@click.option("--json", "as_json", is_flag=True, help="以 JSON 输出")
@click.option("--pm", type=click.Choice([p.value for p in PackageManager]), default=None, help="按包管理器过滤")
@click.option("--kind", type=click.Choice([k.value for k in TestKind]), default=None, help="按测试类型过滤")
def list_tests(ci: bool, as_json: bool, pm: str | None, kind: str | None) -> None:
    """列出注册表中的测试"""
    try:
        registry = _svc().registry
    except IntegMatrixError as e:
        raise click.ClickException(str(e)) from e

    tests = registry.list_tests(
        stability=Stability.STABLE if ci else None,
        kind=TestKind(kind) if kind else None,
        package_manager=PackageManager(pm) if pm else None,
    )
    if as_json:
        click.echo(json.dumps([t.to_dict() for t in tests], ensure_ascii=False, indent=2))
        return
    if not tests:
        click.echo("没有匹配的测试。")
        return
    for t in tests:
        click.echo(f"  {t.name:45s} {t.kind.value:8s} {t.stability.value}")
    click.echo(f"\n共 {len(tests)} 个测试")
