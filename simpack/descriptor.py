# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Package descriptor and metadata resolution.

`resolve` merges base build metadata with an explicit mapping of override
keys. It never reads the process environment itself; callers that want
environment injection collect the recognized keys with
`collect_environment_overrides` and pass them in.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, fields
from typing import Any, Mapping

from simpack.crypto import canonical_json_bytes
from simpack.errors import ValidationError
from simpack.host import host_platform_for_triple
from simpack.semver import SemVer


class Confidentiality(str, enum.Enum):
	PUBLIC = "Public"
	INTERNAL = "Internal"
	RESTRICTED = "Restricted"

	@classmethod
	def parse(cls, value: Any) -> "Confidentiality":
		if isinstance(value, Confidentiality):
			return value
		if isinstance(value, str):
			for member in cls:
				if value.strip().lower() == member.value.lower():
					return member
		raise ValueError(f"confidentiality must be one of {', '.join(m.value for m in cls)}, got {value!r}")


@dataclass(frozen=True)
class PackageDescriptor:
	name: str
	numeric_id: int
	version: str
	build_id: str
	build_id_namespace: str
	confidentiality: Confidentiality
	host_triple: str
	doc_title: str
	description: str = ""

	@property
	def semver(self) -> SemVer:
		return SemVer.parse(self.version)

	def to_dict(self) -> dict[str, Any]:
		return {
			"name": self.name,
			"numeric_id": self.numeric_id,
			"version": self.version,
			"build_id": self.build_id,
			"build_id_namespace": self.build_id_namespace,
			"confidentiality": self.confidentiality.value,
			"host_triple": self.host_triple,
			"doc_title": self.doc_title,
			"description": self.description,
		}


DESCRIPTOR_FIELDS: tuple[str, ...] = tuple(f.name for f in fields(PackageDescriptor))

# Recognized override keys -> descriptor field.
OVERRIDE_KEYS: dict[str, str] = {
	"SIMPACK_PACKAGE_NAME": "name",
	"SIMPACK_PACKAGE_NUMBER": "numeric_id",
	"SIMPACK_PACKAGE_VERSION": "version",
	"SIMPACK_PACKAGE_BUILD_ID": "build_id",
	"SIMPACK_PACKAGE_BUILD_ID_NAMESPACE": "build_id_namespace",
	"SIMPACK_PACKAGE_CONFIDENTIALITY": "confidentiality",
	"SIMPACK_PACKAGE_HOST": "host_triple",
	"SIMPACK_PACKAGE_DESCRIPTION": "description",
	"SIMPACK_PACKAGE_DOC_TITLE": "doc_title",
}
OVERRIDE_PREFIX = "SIMPACK_"

# Base metadata keys accepted by `resolve`, with their aliases.
_BASE_ALIASES: dict[str, str] = {
	"package_number": "numeric_id",
	"host": "host_triple",
}

_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9_-]*$")
_BUILD_ID_RE = re.compile(r"^[A-Za-z0-9._:-]*$")


def collect_environment_overrides(environ: Mapping[str, str]) -> dict[str, str]:
	"""Select the recognized override keys from a process environment."""
	return {k: v for k, v in environ.items() if k in OVERRIDE_KEYS}


def _parse_numeric_id(value: Any) -> int:
	if isinstance(value, bool):
		raise ValueError("numeric_id must be an integer")
	if isinstance(value, int):
		n = value
	elif isinstance(value, str) and value.strip().isdigit():
		n = int(value.strip())
	else:
		raise ValueError(f"numeric_id must be a positive integer, got {value!r}")
	if n <= 0:
		raise ValueError(f"numeric_id must be a positive integer, got {n}")
	return n


def _require_str(raw: Mapping[str, Any], field_name: str, *, default: str | None = None) -> str:
	value = raw.get(field_name)
	if value is None or value == "":
		if default is not None:
			return default
		raise ValidationError(message=f"missing required field '{field_name}'", field=field_name)
	if not isinstance(value, str):
		raise ValidationError(message=f"field '{field_name}' must be a string", field=field_name)
	return value


def _build_descriptor(raw: Mapping[str, Any]) -> PackageDescriptor:
	name = _require_str(raw, "name").strip()
	if not _NAME_RE.match(name):
		raise ValidationError(
			message=f"package name must be lowercase letters, digits, '-' or '_', got {name!r}",
			field="name",
		)

	if raw.get("numeric_id") is None:
		raise ValidationError(message="missing required field 'numeric_id'", field="numeric_id")
	try:
		numeric_id = _parse_numeric_id(raw.get("numeric_id"))
	except ValueError as err:
		raise ValidationError(message=str(err), field="numeric_id") from err

	version = _require_str(raw, "version").strip()
	try:
		SemVer.parse(version)
	except ValueError as err:
		raise ValidationError(message=str(err), field="version") from err

	build_id = _require_str(raw, "build_id", default="").strip()
	if not _BUILD_ID_RE.match(build_id):
		raise ValidationError(message=f"invalid build_id {build_id!r}", field="build_id")
	build_id_namespace = _require_str(raw, "build_id_namespace", default=name).strip()

	try:
		confidentiality = Confidentiality.parse(raw.get("confidentiality", Confidentiality.PUBLIC))
	except ValueError as err:
		raise ValidationError(message=str(err), field="confidentiality") from err

	host_triple = _require_str(raw, "host_triple").strip()
	try:
		host_platform_for_triple(host_triple)
	except ValueError as err:
		raise ValidationError(message=str(err), field="host_triple") from err

	return PackageDescriptor(
		name=name,
		numeric_id=numeric_id,
		version=version,
		build_id=build_id,
		build_id_namespace=build_id_namespace,
		confidentiality=confidentiality,
		host_triple=host_triple,
		doc_title=_require_str(raw, "doc_title", default=name),
		description=_require_str(raw, "description", default=""),
	)


def resolve(
	base_metadata: Mapping[str, Any],
	environment_overrides: Mapping[str, str] | None = None,
	*,
	strict: bool = False,
) -> PackageDescriptor:
	"""
	Merge base metadata with overrides and validate the result.

	In lenient mode unrecognized override keys are ignored. In strict mode any
	`SIMPACK_`-prefixed key outside `OVERRIDE_KEYS` is rejected; keys without
	the prefix are never given meaning.
	"""
	merged: dict[str, Any] = {}
	for key, value in base_metadata.items():
		canon = _BASE_ALIASES.get(key, key)
		if canon not in DESCRIPTOR_FIELDS:
			if strict:
				raise ValidationError(message=f"unknown metadata field '{key}'", field=key)
			continue
		merged[canon] = value

	for key in sorted((environment_overrides or {}).keys()):
		value = environment_overrides[key]
		target = OVERRIDE_KEYS.get(key)
		if target is None:
			if strict and key.startswith(OVERRIDE_PREFIX):
				raise ValidationError(message=f"unrecognized override key '{key}'", field=key)
			continue
		merged[target] = value

	return _build_descriptor(merged)


def validate_descriptor(descriptor: PackageDescriptor) -> PackageDescriptor:
	"""Re-run resolver validation on an already constructed descriptor."""
	if not isinstance(descriptor, PackageDescriptor):
		raise ValidationError(message="expected a PackageDescriptor", field="descriptor")
	raw = {name: getattr(descriptor, name) for name in DESCRIPTOR_FIELDS}
	checked = _build_descriptor(raw)
	for name in DESCRIPTOR_FIELDS:
		if getattr(checked, name) != raw[name]:
			raise ValidationError(message=f"descriptor field '{name}' is not in resolved form", field=name)
	return checked


def descriptor_canonical_bytes(descriptor: PackageDescriptor) -> bytes:
	"""
	Canonical byte serialization of a descriptor.

	Canonical JSON of `to_dict()`: keys sorted by code point, UTF-8, no
	whitespace, `numeric_id` as a JSON integer, `confidentiality` as its enum
	value. This is the byte string covered by the package digest.
	"""
	return canonical_json_bytes(descriptor.to_dict())


def descriptor_from_dict(obj: Mapping[str, Any]) -> PackageDescriptor:
	"""Decode a descriptor as stored in a manifest (strict: exact field set, values already canonical)."""
	unknown = sorted(set(obj.keys()) - set(DESCRIPTOR_FIELDS))
	if unknown:
		raise ValidationError(message=f"descriptor has unknown fields: {', '.join(unknown)}", field=unknown[0])
	missing = sorted(set(DESCRIPTOR_FIELDS) - set(obj.keys()))
	if missing:
		raise ValidationError(message=f"descriptor is missing fields: {', '.join(missing)}", field=missing[0])
	if not isinstance(obj.get("numeric_id"), int) or isinstance(obj.get("numeric_id"), bool):
		raise ValidationError(message="descriptor numeric_id must be an integer", field="numeric_id")
	descriptor = _build_descriptor(obj)
	canonical = descriptor.to_dict()
	for name in DESCRIPTOR_FIELDS:
		if obj[name] != canonical[name]:
			raise ValidationError(message=f"descriptor field '{name}' is not in canonical form", field=name)
	return descriptor
