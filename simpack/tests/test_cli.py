# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path

import pytest

from simpack.cli import main


def _write_file(path: Path, data: bytes | str) -> None:
	path.parent.mkdir(parents=True, exist_ok=True)
	if isinstance(data, str):
		path.write_text(data, encoding="utf-8")
	else:
		path.write_bytes(data)


def _project(tmp_path: Path) -> Path:
	src = tmp_path / "demo"
	_write_file(
		src / "simpack.json",
		json.dumps(
			{
				"format": "simpack-build",
				"version": 0,
				"package": {
					"name": "demo",
					"numeric_id": 1001,
					"version": "1.0.0",
					"host_triple": "x86_64-unknown-linux-gnu",
				},
				"artifact": "build/demo.so",
				"resources": ["README.md"],
			}
		),
	)
	_write_file(src / "build" / "demo.so", b"\x7fELF" + b"\0" * 512)
	_write_file(src / "README.md", "# demo\n")
	return src


def test_keygen_build_verify_inspect(tmp_path: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch) -> None:
	monkeypatch.delenv("SIMPACK_PACKAGE_VERSION", raising=False)
	key = tmp_path / "keys" / "publisher.seed"
	assert main(["keygen", "--out", str(key), "--print-identity", "--print-kid"]) == 0
	identity, kid = capsys.readouterr().out.strip().splitlines()
	assert kid.startswith("ed25519:")

	src = _project(tmp_path)
	out_dir = tmp_path / "dist"
	rc = main(
		[
			"build",
			str(src),
			"--host-api",
			"6.0.185",
			"--host-api",
			"7.38.0",
			"--key",
			str(key),
			"--out-dir",
			str(out_dir),
			"--json",
		]
	)
	report = json.loads(capsys.readouterr().out)
	assert rc == 0, report
	assert report["ok"]
	assert [b["resolved_version"] for b in report["builds"]] == ["6.0.185", "7.38.0"]
	assert all(b["kid"] == kid for b in report["builds"])

	archive = out_dir / "demo-1001-1.0.0-api6.0.185-linux64.spkg"
	assert main(["verify", str(archive), "--trusted-identity", identity]) == 0
	assert "signed by" in capsys.readouterr().out

	assert main(["inspect", str(archive)]) == 0
	manifest = json.loads(capsys.readouterr().out)
	assert manifest["host_api"]["version"] == "6.0.185"

	other = tmp_path / "keys" / "other.pem"
	assert main(["keygen", "--out", str(other), "--algorithm", "ecdsa-p256-sha256", "--print-identity"]) == 0
	other_identity = capsys.readouterr().out.strip()
	assert main(["verify", str(archive), "--trusted-identity", other_identity, "--json"]) == 2
	assert json.loads(capsys.readouterr().out)["ok"] is False


def test_build_failure_exits_2_with_stage(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
	key = tmp_path / "k.seed"
	assert main(["keygen", "--out", str(key)]) == 0
	src = _project(tmp_path)
	rc = main(["build", str(src), "--host-api", "5.0.0", "--key", str(key)])
	assert rc == 2
	err = capsys.readouterr().err
	assert "stage MatrixCheck" in err
	assert "UNSUPPORTED_VERSION" in err


def test_environment_overrides_are_applied(
	tmp_path: Path, capsys: pytest.CaptureFixture[str], monkeypatch: pytest.MonkeyPatch
) -> None:
	key = tmp_path / "k.seed"
	assert main(["keygen", "--out", str(key)]) == 0
	src = _project(tmp_path)
	monkeypatch.setenv("SIMPACK_PACKAGE_VERSION", "1.4.0")
	monkeypatch.setenv("SIMPACK_PACKAGE_FLAVOR", "x")
	assert main(["build", str(src), "--host-api", "6.0.185", "--key", str(key)]) == 0
	assert capsys.readouterr().out.strip().endswith("demo-1001-1.4.0-api6.0.185-linux64.spkg")

	rc = main(["build", str(src), "--host-api", "6.0.185", "--key", str(key), "--overwrite", "--strict-overrides"])
	assert rc == 2
	assert "SIMPACK_PACKAGE_FLAVOR" in capsys.readouterr().err


def test_keygen_refuses_to_overwrite(tmp_path: Path) -> None:
	key = tmp_path / "k.seed"
	assert main(["keygen", "--out", str(key)]) == 0
	with pytest.raises(SystemExit) as excinfo:
		main(["keygen", "--out", str(key)])
	assert excinfo.value.code == 2
	assert main(["keygen", "--out", str(key), "--force"]) == 0


def test_matrix_queries(capsys: pytest.CaptureFixture[str]) -> None:
	assert main(["matrix", "resolve", "6.0.187", "--json"]) == 0
	obj = json.loads(capsys.readouterr().out)
	assert obj["resolved"] == "6.0.185"
	assert obj["exact"] is False
	assert obj["defines"][0] == "SIMPACK_HOST_API_6_0_185"

	assert main(["matrix", "diff", "6.0.191", "7.0.0", "--json"]) == 0
	diff = json.loads(capsys.readouterr().out)
	assert diff["removed"] == ["python_bindings", "save_snapshot"]

	assert main(["matrix", "list", "--since", "7.0.0"]) == 0
	assert capsys.readouterr().out.split() == ["7.0.0", "7.28.0", "7.38.0", "7.57.0"]

	assert main(["matrix", "resolve", "7.0.5"]) == 2
	assert "UNSUPPORTED_VERSION" in capsys.readouterr().err


def test_matrix_append(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
	table = tmp_path / "matrix.json"
	assert main(["matrix", "--matrix", str(table), "append", "1.0.0", "--add", "base_api"]) == 0
	assert main(["matrix", "--matrix", str(table), "append", "1.1.0", "--add", "extra_api"]) == 0
	with pytest.raises(SystemExit):
		main(["matrix", "--matrix", str(table), "append", "1.0.1"])
	capsys.readouterr()
	assert main(["matrix", "--matrix", str(table), "changes", "--json"]) == 0
	assert json.loads(capsys.readouterr().out) == [
		{"from": "1.0.0", "to": "1.1.0", "added": ["extra_api"], "removed": []}
	]


def test_python_dash_m_entrypoint(tmp_path: Path) -> None:
	repo_root = Path(__file__).resolve().parents[2]
	res = subprocess.run(
		[sys.executable, "-m", "simpack", "matrix", "list", "--json"],
		cwd=str(repo_root),
		check=False,
		capture_output=True,
		text=True,
	)
	assert res.returncode == 0, res.stderr
	assert json.loads(res.stdout)[0] == "6.0.163"
