"""包管理器控制器测试"""

from __future__ import annotations

import json

import pytest

from integmatrix.controllers import (
    NpmController,
    PnpmController,
    YarnController,
    get_controller,
)
from integmatrix.core.exceptions import ExecutionError, PackError, UnknownPackageManagerError
from integmatrix.core.models import FailureKind, PackageManager


class TestFactory:
    @pytest.mark.parametrize("pm,cls", [
        ("npm", NpmController), ("yarn", YarnController), (PackageManager.PNPM, PnpmController),
    ])
    def test_get_controller(self, tmp_path, pm, cls) -> None:
        c = get_controller(pm, tmp_path)
        assert isinstance(c, cls)
        assert c.project_dir == tmp_path.resolve()

    def test_unknown(self, tmp_path) -> None:
        with pytest.raises(UnknownPackageManagerError, match="bun"):
            get_controller("bun", tmp_path)


class TestCommands:
    @pytest.mark.asyncio
    async def test_npm_sequence(self, make_project, fake_executor) -> None:
        c = NpmController(make_project(), fake_executor)
        assert (await c.install()).success
        assert (await c.test()).success
        assert (await c.build()).success
        assert fake_executor.commands() == [
            "npm install",
            "npm run test --if-present",
            "npm run build --if-present",
        ]
        assert fake_executor.calls[0].cwd == str(c.project_dir)

    @pytest.mark.asyncio
    async def test_pnpm_commands(self, make_project, fake_executor) -> None:
        c = PnpmController(make_project(), fake_executor)
        await c.install()
        await c.test()
        await c.verify_single_dependency_version("react")
        assert fake_executor.commands() == [
            "pnpm install",
            "pnpm run --if-present test",
            "pnpm list react --json --depth 999",
        ]

    @pytest.mark.asyncio
    async def test_env_allow_list(self, make_project, fake_executor, monkeypatch) -> None:
        monkeypatch.setenv("SECRET_TOKEN", "x")
        monkeypatch.setenv("CI", "true")
        c = NpmController(make_project(), fake_executor)
        await c.install()
        env = fake_executor.calls[0].env
        assert "SECRET_TOKEN" not in env
        assert env["CI"] == "true"
        assert env["COREPACK_ENABLE_AUTO_PIN"] == "0"

    @pytest.mark.asyncio
    async def test_install_failure_is_outcome(self, make_project, fake_executor) -> None:
        fake_executor.on("npm", "install", returncode=1, stderr="ERESOLVE unable to resolve")
        o = await NpmController(make_project(), fake_executor).install()
        assert not o.success
        assert o.kind == FailureKind.COMMAND_FAILURE
        assert "ERESOLVE" in o.describe()

    @pytest.mark.asyncio
    async def test_missing_binary_is_outcome(self, make_project, fake_executor) -> None:
        fake_executor.on("npm", raises=FileNotFoundError("npm"))
        o = await NpmController(make_project(), fake_executor).build()
        assert not o.success
        assert "无法执行" in o.error

    @pytest.mark.asyncio
    async def test_set_dependency_version(self, make_project, fake_executor) -> None:
        project = make_project()
        o = await NpmController(project, fake_executor).set_dependency_version("recharts", "3.1.0")
        assert o.success
        assert json.loads((project / "package.json").read_text())["dependencies"]["recharts"] == "3.1.0"
        assert fake_executor.calls == []


class TestClean:
    @pytest.mark.asyncio
    async def test_removes_install_state(self, make_project, fake_executor) -> None:
        project = make_project()
        (project / "node_modules" / "react").mkdir(parents=True)
        (project / "package-lock.json").write_text("{}")
        (project / "yarn.lock").write_text("")
        (project / "app-1.0.0.tgz").write_bytes(b"x")
        o = await NpmController(project, fake_executor).clean()
        assert o.success
        assert not (project / "node_modules").exists()
        assert not (project / "package-lock.json").exists()
        assert not (project / "yarn.lock").exists()
        assert not (project / "app-1.0.0.tgz").exists()
        assert (project / "package.json").exists()

    @pytest.mark.asyncio
    async def test_idempotent(self, make_project, fake_executor) -> None:
        c = NpmController(make_project(), fake_executor)
        assert (await c.clean()).success
        assert (await c.clean()).success

    @pytest.mark.asyncio
    async def test_yarn_also_cleans_cache(self, make_project, fake_executor) -> None:
        c = YarnController(make_project(), fake_executor)
        assert (await c.clean()).success
        assert fake_executor.commands() == ["yarn cache clean"]

    @pytest.mark.asyncio
    async def test_yarn_cache_failure(self, make_project, fake_executor) -> None:
        fake_executor.on("yarn", "cache", returncode=1, stderr="EACCES")
        o = await YarnController(make_project(), fake_executor).clean()
        assert not o.success
        assert "EACCES" in o.describe()


class TestYarnScripts:
    @pytest.mark.asyncio
    async def test_missing_script_skipped(self, make_project, fake_executor) -> None:
        c = YarnController(make_project(scripts={"build": "vite build"}), fake_executor)
        o = await c.test()
        assert o.success
        assert "未声明" in o.output
        assert (await c.build()).success
        assert fake_executor.commands() == ["yarn run build"]

    @pytest.mark.asyncio
    async def test_no_manifest_fails(self, tmp_path, fake_executor) -> None:
        o = await YarnController(tmp_path, fake_executor).test()
        assert not o.success
        assert o.kind == FailureKind.MANIFEST_FAILURE


class TestPack:
    @pytest.mark.asyncio
    async def test_npm_last_line(self, make_project, fake_executor) -> None:
        project = make_project("my-charts-react18")
        fake_executor.on("npm", "pack", stdout="npm notice Tarball Contents\nnpm notice 1kB index.js\nmy-charts-1.0.0.tgz\n")
        ref = await NpmController(project, fake_executor).pack()
        assert ref == f"file:{project.resolve() / 'my-charts-1.0.0.tgz'}"

    @pytest.mark.asyncio
    async def test_npm_unparseable(self, make_project, fake_executor) -> None:
        fake_executor.on("npm", "pack", stdout="npm notice nothing useful\n")
        with pytest.raises(PackError):
            await NpmController(make_project(), fake_executor).pack()

    @pytest.mark.asyncio
    async def test_pack_command_failure(self, make_project, fake_executor) -> None:
        fake_executor.on("npm", "pack", returncode=1, stderr="prepack failed")
        with pytest.raises(ExecutionError):
            await NpmController(make_project(), fake_executor).pack()

    @pytest.mark.asyncio
    async def test_yarn_success_event(self, make_project, fake_executor) -> None:
        stdout = "\n".join([
            json.dumps({"type": "info", "data": "packing"}),
            json.dumps({"type": "success", "data": 'Wrote tarball to "/tmp/lib/my-charts-v1.0.0.tgz".'}),
        ])
        fake_executor.on("yarn", "pack", stdout=stdout)
        ref = await YarnController(make_project(), fake_executor).pack()
        assert ref == "file:/tmp/lib/my-charts-v1.0.0.tgz"
        assert fake_executor.commands() == ["yarn pack --json"]

    @pytest.mark.asyncio
    async def test_yarn_no_success_event(self, make_project, fake_executor) -> None:
        fake_executor.on("yarn", "pack", stdout=json.dumps({"type": "info", "data": "x"}))
        with pytest.raises(PackError):
            await YarnController(make_project(), fake_executor).pack()


class TestVerifySingleDependency:
    @pytest.mark.asyncio
    async def test_single(self, make_project, fake_executor) -> None:
        fake_executor.installed({"react": "18.3.1"})
        o = await NpmController(make_project(), fake_executor).verify_single_dependency_version("react")
        assert o.success
        assert fake_executor.commands() == ["npm ls react --json"]

    @pytest.mark.asyncio
    async def test_conflict(self, make_project, fake_executor) -> None:
        fake_executor.installed({"react": ["19.1.0", "18.3.1"]})
        o = await PnpmController(make_project(), fake_executor).verify_single_dependency_version("react")
        assert o.kind == FailureKind.VERSION_CONFLICT
        assert o.versions == ("18.3.1", "19.1.0")

    @pytest.mark.asyncio
    async def test_yarn_not_found(self, make_project, fake_executor) -> None:
        fake_executor.on("yarn", "list", returncode=1, stderr='error Package "recharts" not found')
        o = await YarnController(make_project(), fake_executor).verify_single_dependency_version("recharts")
        assert o.kind == FailureKind.NOT_INSTALLED
        assert fake_executor.commands() == ["yarn list --pattern recharts --json --no-progress"]


class TestInstalledTree:
    @pytest.mark.asyncio
    async def test_npm(self, make_project, fake_executor) -> None:
        fake_executor.on("npm", "ls", "--json", stdout=json.dumps({"dependencies": {"react": {"version": "18.3.1"}}}))
        listing = await NpmController(make_project(), fake_executor).installed_tree()
        assert [(n.name, n.version) for n in listing.forest] == [("react", "18.3.1")]
        assert fake_executor.commands() == ["npm ls --json"]

    @pytest.mark.asyncio
    async def test_yarn_json_lines(self, make_project, fake_executor) -> None:
        stdout = "\n".join([
            json.dumps({"type": "info", "data": "fsevents skipped"}),
            json.dumps({"type": "tree", "data": {"type": "list", "trees": [{"name": "react@19.1.0", "children": []}]}}),
        ])
        fake_executor.on("yarn", "list", stdout=stdout)
        listing = await YarnController(make_project(), fake_executor).installed_tree()
        assert [(n.name, n.version) for n in listing.forest] == [("react", "19.1.0")]
        assert fake_executor.commands() == ["yarn list --depth=0 --json --no-progress"]

    @pytest.mark.asyncio
    async def test_nonzero_exit_with_output_is_kept(self, make_project, fake_executor) -> None:
        # 有 extraneous 依赖时列表命令非零退出但仍输出树
        fake_executor.on("pnpm", "list", returncode=1,
                         stdout=json.dumps([{"dependencies": {"react": {"version": "18.3.1"}}}]))
        listing = await PnpmController(make_project(), fake_executor).installed_tree()
        assert listing.forest[0].name == "react"

    @pytest.mark.asyncio
    async def test_failure_without_output(self, make_project, fake_executor) -> None:
        fake_executor.on("npm", "ls", returncode=1, stderr="npm ERR! missing")
        with pytest.raises(ExecutionError, match="依赖列表命令失败"):
            await NpmController(make_project(), fake_executor).installed_tree()
