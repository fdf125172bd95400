"""integmatrix 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
服务容器挂在 click 上下文上，子命令通过 _svc() 获取。
"""

import os

import click

from integmatrix import __version__
from integmatrix.core.config import Config
from integmatrix.core.exceptions import IntegMatrixError
from integmatrix.services.container import ServiceContainer
from integmatrix.utils.logger import setup_logging


def _svc() -> ServiceContainer:
    """获取当前命令上下文中的服务容器"""
    container = click.get_current_context().find_object(ServiceContainer)
    if container is None:
        raise click.UsageError("服务容器未初始化")
    return container


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", "config_path", default="configs/default.yml", help="配置文件路径")
@click.pass_context
def main(ctx: click.Context, config_path: str) -> None:
    """integmatrix - 库集成测试矩阵编排工具"""
    setup_logging(
        level=os.getenv("INTEGMATRIX_LOG_LEVEL", "INFO"),
        json_output=os.getenv("INTEGMATRIX_LOG_JSON", "") == "1",
    )
    if isinstance(ctx.obj, ServiceContainer):
        return
    try:
        ctx.obj = ServiceContainer(config=Config.from_file(config_path))
    except IntegMatrixError as e:
        raise click.ClickException(str(e)) from e


# 注册各领域子命令
from integmatrix.cli.cmd_tests import register as _reg_tests  # noqa: E402
from integmatrix.cli.cmd_run import register as _reg_run  # noqa: E402
from integmatrix.cli.cmd_misc import register as _reg_misc  # noqa: E402

_reg_tests(main)
_reg_run(main)
_reg_misc(main)
