# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Host-API matrix table (v0).

The table is append-only: every new simulator release adds one row at the
end. Rows carry deltas (`added` / `removed`) and the registry accumulates them
into full feature sets, so "what changed in this release" is exactly what a
row records.

On-disk form:

	{
	  "format": "simpack-api-matrix",
	  "version": 0,
	  "rows": [
	    {"version": "6.0.163", "added": [...], "removed": [], "forward_compatible": true, "min_supported": true},
	    ...
	  ]
	}
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from simpack.crypto import canonical_json_bytes
from simpack.matrix import ApiVersionEntry, VersionMatrix
from simpack.semver import SemVer


@dataclass(frozen=True)
class MatrixRow:
	version: str
	added: tuple[str, ...] = ()
	removed: tuple[str, ...] = ()
	forward_compatible: bool = True
	min_supported: bool = False

	def to_dict(self) -> dict[str, Any]:
		return {
			"version": self.version,
			"added": sorted(self.added),
			"removed": sorted(self.removed),
			"forward_compatible": self.forward_compatible,
			"min_supported": self.min_supported,
		}


# Built-in table. Append new host releases at the end.
DEFAULT_ROWS: tuple[MatrixRow, ...] = (
	MatrixRow(
		"6.0.163",
		added=("attr_value_api", "conf_object_api", "haps", "python_bindings"),
		min_supported=True,
	),
	MatrixRow("6.0.166", added=("breakpoint_query_v2",)),
	MatrixRow("6.0.169", added=("cycle_event_api",)),
	MatrixRow("6.0.172", added=("transaction_api",)),
	MatrixRow("6.0.173", added=("save_snapshot", "restore_snapshot_by_index"), forward_compatible=False),
	MatrixRow("6.0.174", added=("save_snapshot_returns_bool",), removed=("restore_snapshot_by_index",)),
	MatrixRow("6.0.177", added=("map_target_api",)),
	MatrixRow(
		"6.0.180",
		added=("snapshot_error_type", "take_snapshot"),
		removed=("save_snapshot_returns_bool",),
	),
	MatrixRow("6.0.185", added=("restore_snapshot_by_name",)),
	MatrixRow("6.0.189", added=("transaction_wait_api",)),
	MatrixRow("6.0.191", added=()),
	MatrixRow(
		"7.0.0",
		added=("python_separate_package",),
		removed=("save_snapshot", "python_bindings"),
		forward_compatible=False,
	),
	MatrixRow("7.28.0", added=("python_limited_api",)),
	MatrixRow("7.38.0", added=("device_api_v2",)),
	MatrixRow("7.57.0", added=()),
)


def entries_from_rows(rows: Iterable[MatrixRow]) -> list[ApiVersionEntry]:
	"""Accumulate row deltas into full `ApiVersionEntry` feature sets."""
	out: list[ApiVersionEntry] = []
	current: set[str] = set()
	for row in rows:
		removed = set(row.removed)
		missing = removed - current
		if missing:
			raise ValueError(f"row {row.version} removes unknown feature flag(s): {', '.join(sorted(missing))}")
		current = (current - removed) | set(row.added)
		out.append(
			ApiVersionEntry(
				version=SemVer.parse(row.version),
				feature_flags=frozenset(current),
				min_supported=row.min_supported,
				forward_compatible=row.forward_compatible,
				removed_flags=frozenset(removed),
			)
		)
	return out


def default_matrix() -> VersionMatrix:
	return VersionMatrix(entries_from_rows(DEFAULT_ROWS))


def _row_from_obj(raw: Any, *, index: int) -> MatrixRow:
	if not isinstance(raw, dict):
		raise ValueError(f"matrix row {index} must be an object")
	allowed = {"version", "added", "removed", "forward_compatible", "min_supported"}
	unknown = sorted(set(raw.keys()) - allowed)
	if unknown:
		raise ValueError(f"matrix row {index} has unknown fields: {', '.join(unknown)}")
	version = raw.get("version")
	if not isinstance(version, str) or not version:
		raise ValueError(f"matrix row {index} is missing version")
	added = raw.get("added", [])
	removed = raw.get("removed", [])
	if not isinstance(added, list) or any(not isinstance(f, str) for f in added):
		raise ValueError(f"matrix row {index} 'added' must be a list of strings")
	if not isinstance(removed, list) or any(not isinstance(f, str) for f in removed):
		raise ValueError(f"matrix row {index} 'removed' must be a list of strings")
	fwd = raw.get("forward_compatible", True)
	min_supported = raw.get("min_supported", False)
	if not isinstance(fwd, bool) or not isinstance(min_supported, bool):
		raise ValueError(f"matrix row {index} flags must be booleans")
	return MatrixRow(
		version=version,
		added=tuple(added),
		removed=tuple(removed),
		forward_compatible=fwd,
		min_supported=min_supported,
	)


def load_matrix_rows(path: Path) -> list[MatrixRow]:
	obj = json.loads(path.read_text(encoding="utf-8"))
	if not isinstance(obj, dict):
		raise ValueError("matrix table must be a JSON object")
	if obj.get("format") != "simpack-api-matrix" or obj.get("version") != 0:
		raise ValueError("unsupported matrix table format/version")
	rows = obj.get("rows")
	if not isinstance(rows, list):
		raise ValueError("matrix table rows must be an array")
	return [_row_from_obj(r, index=i) for i, r in enumerate(rows)]


def load_matrix_table(path: Path) -> VersionMatrix:
	return VersionMatrix(entries_from_rows(load_matrix_rows(path)))


def save_matrix_rows(path: Path, rows: Iterable[MatrixRow]) -> None:
	row_list = list(rows)
	# Validate before anything touches the disk.
	VersionMatrix(entries_from_rows(row_list))
	obj = {
		"format": "simpack-api-matrix",
		"version": 0,
		"rows": [r.to_dict() for r in row_list],
	}
	path.parent.mkdir(parents=True, exist_ok=True)
	tmp = path.with_name(path.name + f".tmp.{os.getpid()}")
	tmp.write_bytes(canonical_json_bytes(obj) + b"\n")
	os.replace(tmp, path)


def append_matrix_row(path: Path, row: MatrixRow) -> None:
	"""
	Append one host release to a persisted table. The new version must be
	newer than every existing row; rows are never edited or reordered.
	"""
	rows = load_matrix_rows(path) if path.exists() else []
	if rows:
		newest = SemVer.parse(rows[-1].version)
		if SemVer.parse(row.version) <= newest:
			raise ValueError(f"matrix table is append-only: {row.version} is not newer than {newest}")
	rows.append(row)
	save_matrix_rows(path, rows)
