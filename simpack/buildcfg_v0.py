# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Build configuration file (`simpack.json`, v0).

	{
	  "format": "simpack-build",
	  "version": 0,
	  "package": {"name": "demo", "numeric_id": 1001, "version": "1.0.0", ...},
	  "artifact": "build/demo.so",
	  "resources": [{"path": "doc/README.md", "source": "README.md"}],
	  "toolchain": {"command": ["make", "module"]}
	}

`package` holds the base descriptor metadata; environment overrides are
applied later by the resolver.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any

from simpack.errors import ValidationError

CONFIG_FILENAME = "simpack.json"


@dataclass(frozen=True)
class ResourceSpec:
	path: str  # archive-relative path under resources/
	source: Path  # absolute file path


@dataclass(frozen=True)
class BuildConfig:
	source_dir: Path
	package: dict[str, Any]
	artifact: Path | None
	resources: tuple[ResourceSpec, ...]
	command: tuple[str, ...] | None


def _source_rel(source_dir: Path, rel: str, *, what: str) -> Path:
	p = PurePosixPath(rel.replace("\\", "/"))
	if p.is_absolute() or any(part == ".." for part in p.parts):
		raise ValidationError(message=f"{what} must stay inside the source directory, got: {rel}", field=what)
	return source_dir / Path(*p.parts)


def load_build_config(source_location: Path) -> BuildConfig:
	"""
	Load `simpack.json` from a source directory (or the file path itself).

	Raises ValidationError naming the offending field.
	"""
	path = source_location / CONFIG_FILENAME if source_location.is_dir() else source_location
	source_dir = path.parent
	if not path.exists():
		raise ValidationError(message=f"build configuration not found: {path}", field="config")
	try:
		data = json.loads(path.read_text(encoding="utf-8"))
	except json.JSONDecodeError as err:
		raise ValidationError(message=f"build configuration is not valid JSON: {err}", field="config") from err
	if not isinstance(data, dict):
		raise ValidationError(message="build configuration must be a JSON object", field="config")
	if data.get("format") != "simpack-build" or data.get("version") != 0:
		raise ValidationError(message="unsupported build configuration format/version", field="format")
	allowed_top = {"format", "version", "package", "artifact", "resources", "toolchain", "x"}
	unknown_top = sorted(set(data.keys()) - allowed_top)
	if unknown_top:
		raise ValidationError(message=f"build configuration has unknown fields: {', '.join(unknown_top)}", field=unknown_top[0])

	package = data.get("package")
	if not isinstance(package, dict):
		raise ValidationError(message="build configuration 'package' must be an object", field="package")

	artifact: Path | None = None
	raw_artifact = data.get("artifact")
	if raw_artifact is not None:
		if not isinstance(raw_artifact, str) or not raw_artifact:
			raise ValidationError(message="'artifact' must be a relative path string", field="artifact")
		artifact = _source_rel(source_dir, raw_artifact, what="artifact")

	resources: list[ResourceSpec] = []
	raw_resources = data.get("resources", [])
	if not isinstance(raw_resources, list):
		raise ValidationError(message="'resources' must be an array", field="resources")
	for i, raw in enumerate(raw_resources):
		if isinstance(raw, str):
			raw = {"path": raw, "source": raw}
		if not isinstance(raw, dict) or not isinstance(raw.get("path"), str) or not isinstance(raw.get("source"), str):
			raise ValidationError(message=f"resource {i} must have string 'path' and 'source'", field="resources")
		resources.append(ResourceSpec(path=raw["path"], source=_source_rel(source_dir, raw["source"], what="resources")))

	command: tuple[str, ...] | None = None
	toolchain = data.get("toolchain")
	if toolchain is not None:
		if not isinstance(toolchain, dict):
			raise ValidationError(message="'toolchain' must be an object", field="toolchain")
		cmd = toolchain.get("command")
		if not isinstance(cmd, list) or not cmd or any(not isinstance(c, str) for c in cmd):
			raise ValidationError(message="'toolchain.command' must be a non-empty list of strings", field="toolchain")
		command = tuple(cmd)

	return BuildConfig(
		source_dir=source_dir,
		package=dict(package),
		artifact=artifact,
		resources=tuple(resources),
		command=command,
	)
