"""CLI — 运行命令"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import click

from integmatrix.cli import _svc
from integmatrix.core.events import PHASE_UPDATED, PACK_COMPLETED, PACK_FAILED, Event
from integmatrix.core.exceptions import IntegMatrixError
from integmatrix.core.models import PhaseStatus, RunStatus, TestRun
from integmatrix.services.container import ServiceContainer
from integmatrix.utils.yaml_io import atomic_write


def register(group: click.Group) -> None:
    group.add_command(run)


def _print_event(event: Event) -> None:
    if event.type == PHASE_UPDATED:
        phase = event.data["phase"]
        if phase["status"] in (PhaseStatus.PASSED.value, PhaseStatus.FAILED.value):
            click.echo(
                f"  [{event.data['id']}] {event.data['phaseName']:10s} "
                f"{phase['status']} ({phase['durationMs']}ms)"
            )
    elif event.type == PACK_COMPLETED:
        click.echo(f"打包完成: {event.data['reference']} (应用到 {event.data['applied']} 个测试)")
    elif event.type == PACK_FAILED:
        click.echo(f"打包失败: {event.data['error']}", err=True)


async def _run_queue(
    container: ServiceContainer, names: tuple[str, ...], version: str | None, pack_dir: str | None,
) -> list[TestRun]:
    queue = container.queue
    if pack_dir:
        queue.pack_first(pack_dir)
    ids = [queue.enqueue(name, version) for name in names]
    await queue.join()
    return [r for r in (queue.get_run(i) for i in ids) if r is not None]


def _summarize(run_: TestRun) -> None:
    click.echo(f"\n{run_.test_name}: {run_.status.value}")
    if run_.error:
        click.echo(f"  错误: {run_.error}")
    for name in run_.failed_phases():
        click.echo(f"  --- {name} ---")
        for line in run_.phases[name].output.splitlines():
            click.echo(f"  {line}")


def result_record(run_: TestRun) -> dict[str, Any]:
    """结果文件中的一条记录，每个阶段一项"""
    return {
        "name": run_.test_name,
        "status": run_.status.value,
        "phases": [
            {
                "name": name,
                "status": phase.status.value,
                "success": phase.status == PhaseStatus.PASSED,
                "error": phase.output if phase.status == PhaseStatus.FAILED else None,
            }
            for name, phase in run_.phases.items()
        ],
    }


@click.command()
@click.argument("names", nargs=-1)
@click.option("--all", "run_all", is_flag=True, help="运行注册表中的全部测试")
@click.option("--version", "-v", "version", default=None, help="被测库版本（写入 package.json）")
@click.option("--pack-dir", default=None, type=click.Path(exists=True, file_okay=False),
              help="先打包该本地目录，产物作为全部测试的版本")
@click.option("--output", "-o", default=None, type=click.Path(dir_okay=False),
              help="把每个测试的结果写入 JSON 文件")
def run(
    names: tuple[str, ...],
    run_all: bool,
    version: str | None,
    pack_dir: str | None,
    output: str | None,
) -> None:
    """按顺序运行一个或多个集成测试"""
    container = _svc()
    if run_all:
        names = tuple(container.registry.list_names())
    if not names:
        raise click.UsageError("需要指定测试名或 --all")
    try:
        for name in names:
            container.registry.get(name)
    except IntegMatrixError as e:
        raise click.ClickException(str(e)) from e

    unsubscribe = container.broadcaster.subscribe(_print_event)
    try:
        runs = asyncio.run(_run_queue(container, names, version, pack_dir))
    finally:
        unsubscribe()

    for r in runs:
        _summarize(r)
    if output:
        records = [result_record(r) for r in runs]
        atomic_write(Path(output), json.dumps(records, indent=2, ensure_ascii=False) + "\n")
        click.echo(f"\n结果已写入 {output}")
    passed = sum(1 for r in runs if r.status == RunStatus.PASSED)
    click.echo(f"\n通过 {passed}/{len(runs)}")
    if passed != len(runs):
        raise SystemExit(1)
