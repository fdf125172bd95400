"""公共测试夹具

FakeExecutor 实现 CommandExecutor 协议: 按 argv 前缀匹配预设响应，
记录每次调用，不启动任何真实子进程。
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import pytest

from integmatrix.core.events import Event, EventBroadcaster
from integmatrix.utils.shell import CommandResult

Responder = Callable[[list[str], str], CommandResult]

_LIST_VERBS = ("ls", "list")


@dataclass
class Call:
    args: list[str]
    cwd: str
    env: dict[str, str] | None
    timeout: float | None


class FakeExecutor:
    """按前缀匹配的假执行器，后注册的规则优先"""

    def __init__(self) -> None:
        self.calls: list[Call] = []
        self._rules: list[tuple[tuple[str, ...], Any]] = []

    def on(
        self,
        *prefix: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        raises: BaseException | None = None,
        delay: float = 0.0,
        respond: Responder | None = None,
    ) -> FakeExecutor:
        async def _handler(args: list[str], cwd: str) -> CommandResult:
            if delay:
                await asyncio.sleep(delay)
            if raises is not None:
                raise raises
            if respond is not None:
                return respond(args, cwd)
            return CommandResult(returncode, stdout, stderr)

        self._rules.insert(0, (tuple(prefix), _handler))
        return self

    def installed(self, versions: dict[str, str | list[str]]) -> FakeExecutor:
        """让 npm ls / yarn list / pnpm list 报告给定的已安装版本（npm 形态输出）"""
        def _respond(args: list[str], cwd: str) -> CommandResult:
            name = _listed_name(args)
            found = versions.get(name)
            if found is None:
                return CommandResult(1, "{}", "")
            if isinstance(found, str):
                found = [found]
            # 多个版本: 一个在顶层，其余挂在中间包下面
            deps: dict[str, Any] = {name: {"version": found[0]}}
            for i, v in enumerate(found[1:]):
                deps[f"holder-{i}"] = {"version": "1.0.0", "dependencies": {name: {"version": v}}}
            return CommandResult(0, json.dumps({"name": "app", "dependencies": deps}), "")

        for pm in ("npm", "yarn", "pnpm"):
            for verb in _LIST_VERBS:
                self.on(pm, verb, respond=_respond)
        return self

    async def execute(
        self,
        args: list[str],
        *,
        cwd: str,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        args = list(args)
        self.calls.append(Call(args, cwd, env, timeout))
        for prefix, handler in self._rules:
            if tuple(args[: len(prefix)]) == prefix:
                return await handler(args, cwd)
        return CommandResult(0, "", "")

    def commands(self) -> list[str]:
        return [" ".join(c.args) for c in self.calls]


class EventRecorder:
    """按顺序记录收到的事件"""

    def __init__(self) -> None:
        self.events: list[Event] = []

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[Event]:
        return [e for e in self.events if e.type == event_type]


def _listed_name(args: list[str]) -> str:
    if "--pattern" in args:
        return args[args.index("--pattern") + 1]
    return args[2]


@pytest.fixture()
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture()
def make_project(tmp_path: Path):
    """在 tmp_path 下创建带 package.json 的项目目录"""
    def _make(
        name: str = "app",
        dependencies: dict[str, str] | None = None,
        scripts: dict[str, str] | None = None,
        peer: dict[str, str] | None = None,
    ) -> Path:
        project = tmp_path / name
        project.mkdir(parents=True, exist_ok=True)
        manifest: dict[str, Any] = {"name": name, "version": "1.0.0"}
        if scripts is not None:
            manifest["scripts"] = scripts
        manifest["dependencies"] = dependencies if dependencies is not None else {"recharts": "^3.0.0"}
        if peer is not None:
            manifest["peerDependencies"] = peer
        (project / "package.json").write_text(json.dumps(manifest, indent=2) + "\n", encoding="utf-8")
        return project

    return _make


@pytest.fixture()
def make_recorder():
    """创建事件记录器，给定广播器时自动订阅"""
    def _make(broadcaster: EventBroadcaster | None = None) -> EventRecorder:
        recorder = EventRecorder()
        if broadcaster is not None:
            broadcaster.subscribe(recorder)
        return recorder

    return _make
