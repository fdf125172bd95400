"""CLI 命令测试"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from integmatrix.cli import main
from integmatrix.core.config import Config
from integmatrix.core.models import PackageManager, TestDefinition
from integmatrix.core.registry import TestRegistry
from integmatrix.services.container import ServiceContainer
from integmatrix.utils.shell import CommandResult

NAME = "npm:integrations/ts-react18"


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("integmatrix.cli.setup_logging", lambda **kwargs: None)


@pytest.fixture()
def container(tmp_path: Path, fake_executor, make_project) -> ServiceContainer:
    make_project("integrations/ts-react18")
    fake_executor.installed({"react": "18.3.1"})
    registry = TestRegistry.from_definitions([
        TestDefinition(name=NAME, package_manager=PackageManager.NPM, integration_path="integrations/ts-react18"),
    ])
    return ServiceContainer(
        Config(root_dir=str(tmp_path), critical_dependencies=["react"]),
        executor=fake_executor, registry=registry,
    )


def _invoke(container: ServiceContainer, *args: str):
    return CliRunner().invoke(main, list(args), obj=container)


class TestListCommand:
    def test_text(self, container) -> None:
        result = _invoke(container, "list")
        assert result.exit_code == 0
        assert NAME in result.output
        assert "共 1 个测试" in result.output

    def test_json(self, container) -> None:
        result = _invoke(container, "list", "--json")
        assert [t["name"] for t in json.loads(result.output)] == [NAME]

    def test_ci_filter(self, container) -> None:
        result = _invoke(container, "list", "--ci")
        assert "没有匹配的测试" in result.output

    def test_bundled_registry(self, tmp_path: Path) -> None:
        cfg = Path(__file__).resolve().parents[2] / "configs" / "default.yml"
        root = cfg.parents[1]
        container = ServiceContainer(Config.from_file(str(cfg)))
        container.config.root_dir = str(root)
        result = _invoke(container, "list", "--kind", "library", "--pm", "yarn")
        assert result.exit_code == 0
        assert "共 8 个测试" in result.output


class TestRunCommand:
    def test_passing_run(self, container) -> None:
        result = _invoke(container, "run", NAME, "--version", "3.1.0")
        assert result.exit_code == 0, result.output
        assert "通过 1/1" in result.output
        assert "install" in result.output

    def test_failing_run_exits_nonzero(self, container, fake_executor) -> None:
        fake_executor.on("npm", "install", returncode=1, stderr="npm ERR! ERESOLVE")
        result = _invoke(container, "run", NAME)
        assert result.exit_code == 1
        assert "ERESOLVE" in result.output
        assert "通过 0/1" in result.output

    def test_unknown_test(self, container) -> None:
        result = _invoke(container, "run", "npm:nope")
        assert result.exit_code == 1
        assert "未知测试" in result.output

    def test_pack_dir(self, container, fake_executor, make_project) -> None:
        fake_executor.on("npm", "pack", stdout="recharts-3.2.0.tgz\n")
        lib = make_project("recharts-src")
        result = _invoke(container, "run", NAME, "--pack-dir", str(lib))
        assert result.exit_code == 0, result.output
        assert "打包完成" in result.output

    def test_all_writes_results(self, container, tmp_path: Path) -> None:
        out = tmp_path / "out" / "results.json"
        result = _invoke(container, "run", "--all", "--output", str(out))
        assert result.exit_code == 0, result.output

        records = json.loads(out.read_text(encoding="utf-8"))
        assert [r["name"] for r in records] == [NAME]
        assert records[0]["status"] == "passed"
        assert [p["name"] for p in records[0]["phases"]] == [
            "clean", "setVersion", "install", "test", "build", "verify",
        ]
        assert all(p["success"] and p["error"] is None for p in records[0]["phases"])

    def test_results_record_failures(self, container, fake_executor, tmp_path: Path) -> None:
        fake_executor.on("npm", "install", returncode=1, stderr="npm ERR! ERESOLVE")
        out = tmp_path / "results.json"
        result = _invoke(container, "run", NAME, "-o", str(out))
        assert result.exit_code == 1

        phases = {p["name"]: p for p in json.loads(out.read_text(encoding="utf-8"))[0]["phases"]}
        assert phases["install"]["success"] is False
        assert "ERESOLVE" in phases["install"]["error"]
        assert phases["test"]["status"] == "pending"

    def test_requires_names_or_all(self, container) -> None:
        result = _invoke(container, "run")
        assert result.exit_code == 2
        assert "--all" in result.output


class TestMiscCommands:
    def test_verify(self, container, make_project) -> None:
        project = make_project("installed-app")
        result = _invoke(container, "verify", str(project), "react", "recharts")
        assert result.exit_code == 1
        assert "[OK]   react: 单一版本 18.3.1" in result.output
        assert "[FAIL] recharts" in result.output

    def test_compare(self, container, fake_executor, make_project) -> None:
        left, right = make_project("app-react18"), make_project("app-react19")
        trees = {
            str(left.resolve()): {"react": "18.3.1", "recharts": "3.1.0", "lodash": "4.17.21"},
            str(right.resolve()): {"react": "19.1.0", "recharts": "3.1.0"},
        }

        def _ls(args, cwd) -> CommandResult:
            deps = {name: {"version": v} for name, v in trees[cwd].items()}
            return CommandResult(0, json.dumps({"dependencies": deps}), "")

        fake_executor.on("npm", "ls", "--json", respond=_ls)
        result = _invoke(container, "compare", str(left), str(right))
        assert result.exit_code == 0, result.output
        assert result.output.splitlines() == ["DIFF react: 18.3.1 vs 19.1.0", "SAME recharts: 3.1.0"]

    def test_compare_listing_failure(self, container, fake_executor, make_project) -> None:
        fake_executor.on("npm", "ls", "--json", returncode=1, stderr="npm ERR! missing")
        result = _invoke(container, "compare", str(make_project("a")), str(make_project("b")))
        assert result.exit_code == 1
        assert "依赖列表命令失败" in result.output

    def test_pack(self, container, fake_executor, make_project) -> None:
        fake_executor.on("npm", "pack", stdout="recharts-3.2.0.tgz\n")
        project = make_project("recharts")
        result = _invoke(container, "pack", str(project))
        assert result.exit_code == 0
        assert result.output.strip() == f"file:{project.resolve() / 'recharts-3.2.0.tgz'}"

    def test_pack_failure(self, container, fake_executor, make_project) -> None:
        fake_executor.on("npm", "run", "build", returncode=1, stderr="tsc error")
        result = _invoke(container, "pack", str(make_project("recharts")))
        assert result.exit_code == 1
        assert "build 失败" in result.output

    def test_version(self) -> None:
        from integmatrix import __version__
        result = CliRunner().invoke(main, ["--version"])
        assert __version__ in result.output
