"""CLI — 杂项命令（依赖校验、依赖对比、打包、Web 服务）"""

from __future__ import annotations

import asyncio

import click

from integmatrix.cli import _svc
from integmatrix.core.exceptions import IntegMatrixError
from integmatrix.core.models import Outcome, PackageManager

_PM_CHOICE = click.Choice([p.value for p in PackageManager])


def register(group: click.Group) -> None:
    group.add_command(verify)
    group.add_command(compare)
    group.add_command(pack)
    group.add_command(serve)


def _controller(pm: str, directory: str):
    from integmatrix.controllers import get_controller

    svc = _svc()
    return get_controller(
        pm, directory,
        executor=svc.executor,
        env_passthrough=svc.config.env_passthrough,
        timeout=svc.config.timeout,
    )


# ---- 依赖校验 ----

@click.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.argument("deps", nargs=-1, required=True)
@click.option("--pm", default=PackageManager.NPM.value, type=_PM_CHOICE, help="包管理器")
def verify(directory: str, deps: tuple[str, ...], pm: str) -> None:
    """校验已安装项目中每个依赖只有一个版本"""
    controller = _controller(pm, directory)

    async def _verify_all() -> list[Outcome]:
        return [await controller.verify_single_dependency_version(d) for d in deps]

    outcomes = asyncio.run(_verify_all())
    for o in outcomes:
        if o.success:
            click.echo(f"[OK]   {o.output}")
        else:
            click.echo(f"[FAIL] {o.describe()}")
    if not all(o.success for o in outcomes):
        raise SystemExit(1)


# ---- 依赖对比 ----

@click.command()
@click.argument("left", type=click.Path(exists=True, file_okay=False))
@click.argument("right", type=click.Path(exists=True, file_okay=False))
@click.option("--pm", default=PackageManager.NPM.value, type=_PM_CHOICE, help="包管理器")
def compare(left: str, right: str, pm: str) -> None:
    """对比两个已安装项目共有依赖的版本，逐个输出 SAME / DIFF"""
    from integmatrix.core.verifier import compare_forests

    controllers = (_controller(pm, left), _controller(pm, right))

    async def _list_both():
        return await asyncio.gather(*(c.installed_tree() for c in controllers))

    try:
        left_listing, right_listing = asyncio.run(_list_both())
    except IntegMatrixError as e:
        raise click.ClickException(str(e)) from e
    except OSError as e:
        raise click.ClickException(f"依赖列表命令无法执行: {e}") from e

    for comparison in compare_forests(left_listing.forest, right_listing.forest):
        click.echo(comparison.describe())


# ---- 打包 ----

@click.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--pm", default=PackageManager.NPM.value, type=_PM_CHOICE, help="包管理器")
def pack(directory: str, pm: str) -> None:
    """build 并 pack 本地目录，输出 file: 引用"""
    from integmatrix.services.packer import DirectoryPacker

    cfg = _svc().config
    packer = DirectoryPacker(
        pm, _svc().executor,
        env_passthrough=cfg.env_passthrough,
        timeout=cfg.timeout,
    )
    try:
        reference = asyncio.run(packer(directory))
    except IntegMatrixError as e:
        raise click.ClickException(str(e)) from e
    click.echo(reference)


# ---- Web 服务 ----

@click.command()
@click.option("--host", default=None, help="监听地址（默认取配置）")
@click.option("--port", default=None, type=int, help="监听端口（默认取配置）")
def serve(host: str | None, port: int | None) -> None:
    """启动 Web API 与事件流"""
    from integmatrix.services.engine import EngineThread
    from integmatrix.web.app import run_server

    container = _svc()
    engine = EngineThread(container).start()
    try:
        run_server(
            engine,
            host=host or container.config.host,
            port=port or container.config.port,
        )
    finally:
        engine.stop()
