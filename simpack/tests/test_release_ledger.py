# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import json
from pathlib import Path

import pytest

from simpack.descriptor import PackageDescriptor, resolve
from simpack.errors import ValidationError
from simpack.ledger_v0 import LedgerEntry, check_release, load_ledger, record_release, rollback_release


def _descriptor(name: str = "demo", numeric_id: int = 1001, version: str = "1.0.0") -> PackageDescriptor:
	return resolve(
		{"name": name, "numeric_id": numeric_id, "version": version, "host_triple": "x86_64-linux", "build_id": "b1"}
	)


def test_missing_ledger_is_empty(tmp_path: Path) -> None:
	assert load_ledger(tmp_path / "ledger.json") == {}


def test_record_and_reload(tmp_path: Path) -> None:
	path = tmp_path / "ledger.json"
	record_release(path, _descriptor())
	record_release(path, _descriptor(name="other", numeric_id=2002, version="0.3.0"))
	ledger = load_ledger(path)
	assert ledger[1001] == LedgerEntry(numeric_id=1001, name="demo", version="1.0.0", build_id="b1")
	assert ledger[2002].name == "other"
	obj = json.loads(path.read_text(encoding="utf-8"))
	assert obj["format"] == "simpack-ledger"
	assert list(obj["releases"].keys()) == ["1001", "2002"]


def test_same_version_may_be_rebuilt(tmp_path: Path) -> None:
	path = tmp_path / "ledger.json"
	record_release(path, _descriptor())
	check_release(load_ledger(path), _descriptor())


def test_version_regression_is_rejected(tmp_path: Path) -> None:
	path = tmp_path / "ledger.json"
	record_release(path, _descriptor(version="1.2.0"))
	with pytest.raises(ValidationError) as excinfo:
		record_release(path, _descriptor(version="1.1.9"))
	assert excinfo.value.field == "version"
	with pytest.raises(ValidationError):
		check_release(load_ledger(path), _descriptor(version="1.2.0-rc.1"))
	assert load_ledger(path)[1001].version == "1.2.0"


def test_numeric_id_belongs_to_one_name(tmp_path: Path) -> None:
	path = tmp_path / "ledger.json"
	record_release(path, _descriptor())
	with pytest.raises(ValidationError) as excinfo:
		record_release(path, _descriptor(name="impostor", version="9.0.0"))
	assert excinfo.value.field == "numeric_id"


@pytest.mark.parametrize(
	"content",
	[
		"[]",
		'{"format": "other", "version": 0, "releases": {}}',
		'{"format": "simpack-ledger", "version": 0, "releases": {"x": {"name": "a", "version": "1.0.0"}}}',
		'{"format": "simpack-ledger", "version": 0, "releases": {"1": {"version": "1.0.0"}}}',
	],
)
def test_malformed_ledgers_are_rejected(tmp_path: Path, content: str) -> None:
	path = tmp_path / "ledger.json"
	path.write_text(content, encoding="utf-8")
	with pytest.raises(ValueError):
		load_ledger(path)


def test_rollback_restores_only_the_recorded_id(tmp_path: Path) -> None:
	path = tmp_path / "ledger.json"
	record_release(path, _descriptor(version="1.0.0"))
	prior = record_release(path, _descriptor(version="1.1.0"))
	assert prior is not None and prior.version == "1.0.0"
	fresh = record_release(path, _descriptor(name="other", numeric_id=2002))
	assert fresh is None

	rollback_release(path, _descriptor(version="1.1.0"), prior)
	rollback_release(path, _descriptor(name="other", numeric_id=2002), fresh)
	ledger = load_ledger(path)
	assert ledger[1001].version == "1.0.0"
	assert 2002 not in ledger
