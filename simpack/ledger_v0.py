# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Release ledger (v0).

Records what a distribution channel has already released so two invariants
hold across builds:
- a numeric id belongs to exactly one package name;
- versions never go backwards for a (name, numeric id) pair.

	{
	  "format": "simpack-ledger",
	  "version": 0,
	  "releases": {
	    "1001": {"name": "demo", "version": "1.0.0", "build_id": "..."}
	  }
	}
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from simpack.crypto import canonical_json_bytes
from simpack.descriptor import PackageDescriptor
from simpack.errors import ValidationError
from simpack.semver import SemVer


@dataclass(frozen=True)
class LedgerEntry:
	numeric_id: int
	name: str
	version: str
	build_id: str


def load_ledger(path: Path) -> dict[int, LedgerEntry]:
	if not path.exists():
		return {}
	data = json.loads(path.read_text(encoding="utf-8"))
	if not isinstance(data, dict):
		raise ValueError("ledger must be a JSON object")
	if data.get("format") != "simpack-ledger" or data.get("version") != 0:
		raise ValueError("unsupported ledger format/version")
	releases = data.get("releases")
	if not isinstance(releases, dict):
		raise ValueError("ledger releases must be an object")
	out: dict[int, LedgerEntry] = {}
	for key, raw in releases.items():
		if not isinstance(key, str) or not key.isdigit():
			raise ValueError(f"ledger key {key!r} must be a numeric id")
		if not isinstance(raw, dict):
			raise ValueError(f"ledger entry {key} must be an object")
		name = raw.get("name")
		version = raw.get("version")
		if not isinstance(name, str) or not name:
			raise ValueError(f"ledger entry {key} is missing name")
		if not isinstance(version, str) or not version:
			raise ValueError(f"ledger entry {key} is missing version")
		out[int(key)] = LedgerEntry(numeric_id=int(key), name=name, version=version, build_id=str(raw.get("build_id") or ""))
	return out


def save_ledger(path: Path, entries: dict[int, LedgerEntry]) -> None:
	obj: dict[str, Any] = {
		"format": "simpack-ledger",
		"version": 0,
		"releases": {
			str(e.numeric_id): {"name": e.name, "version": e.version, "build_id": e.build_id}
			for e in sorted(entries.values(), key=lambda e: e.numeric_id)
		},
	}
	path.parent.mkdir(parents=True, exist_ok=True)
	tmp = path.with_name(path.name + f".tmp.{os.getpid()}")
	tmp.write_bytes(canonical_json_bytes(obj) + b"\n")
	os.replace(tmp, path)


def check_release(ledger: dict[int, LedgerEntry], descriptor: PackageDescriptor) -> None:
	"""Raise ValidationError when releasing `descriptor` would break an invariant."""
	prior = ledger.get(descriptor.numeric_id)
	if prior is None:
		return
	if prior.name != descriptor.name:
		raise ValidationError(
			message=f"numeric_id {descriptor.numeric_id} is already used by package '{prior.name}'",
			field="numeric_id",
		)
	if SemVer.parse(descriptor.version) < SemVer.parse(prior.version):
		raise ValidationError(
			message=f"version {descriptor.version} is older than released version {prior.version}",
			field="version",
		)


def record_release(path: Path, descriptor: PackageDescriptor) -> LedgerEntry | None:
	"""Record `descriptor` as released and return the entry it replaced, if any."""
	ledger = load_ledger(path)
	check_release(ledger, descriptor)
	prior = ledger.get(descriptor.numeric_id)
	ledger[descriptor.numeric_id] = LedgerEntry(
		numeric_id=descriptor.numeric_id,
		name=descriptor.name,
		version=descriptor.version,
		build_id=descriptor.build_id,
	)
	save_ledger(path, ledger)
	return prior


def rollback_release(path: Path, descriptor: PackageDescriptor, prior: LedgerEntry | None) -> None:
	"""Undo `record_release` for one numeric id, leaving other entries untouched."""
	ledger = load_ledger(path)
	if prior is None:
		ledger.pop(descriptor.numeric_id, None)
	else:
		ledger[prior.numeric_id] = prior
	save_ledger(path, ledger)
