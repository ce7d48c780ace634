# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Installable package archive (manifest format v1).

The archive is a deterministic zip container:
- entries are written in sorted order with fixed timestamps,
- no compression (STORE), so bytes do not depend on the zlib build,
- the manifest is canonical JSON.

Layout:

	manifest.json
	<host_dir>/lib/<name><lib_suffix>     compiled module (e.g. linux64/lib/demo.so)
	resources/<relative path>             auxiliary resources, paths unmodified

Archives are committed all-or-nothing: they are written in a private staging
directory next to the output path and moved into place only when complete.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any, Iterable, Mapping, Sequence

from simpack.crypto import canonical_json_bytes, sha256_hex
from simpack.descriptor import PackageDescriptor, descriptor_from_dict
from simpack.errors import CollisionError, IntegrityError, LayoutConflictError, ValidationError
from simpack.host import host_platform_for_triple
from simpack.matrix import ApiVersionEntry
from simpack.semver import SemVer
from simpack.sign import SignatureBlock, signature_block_from_dict, signature_block_to_dict

logger = logging.getLogger(__name__)

MANIFEST_FORMAT = "simpack-manifest"
FORMAT_VERSION = 1
MANIFEST_PATH = "manifest.json"
RESOURCES_DIR = "resources"
ARCHIVE_SUFFIX = ".spkg"


@dataclass(frozen=True)
class Resource:
	"""An auxiliary file shipped with the module, keyed by its relative path."""

	path: str
	data: bytes


@dataclass(frozen=True)
class ResourceEntry:
	"""Manifest listing entry (archive path + size + content hash)."""

	path: str
	size: int
	sha256: str
	kind: str  # "module" | "resource"

	def to_dict(self) -> dict[str, Any]:
		return {"path": self.path, "size": self.size, "sha256": self.sha256, "kind": self.kind}


@dataclass(frozen=True)
class PackageArchive:
	descriptor: PackageDescriptor
	artifact: bytes
	signature: SignatureBlock
	resources: tuple[Resource, ...]
	host_api: ApiVersionEntry | None
	manifest_bytes: bytes

	@property
	def module_path(self) -> str:
		return module_archive_path(self.descriptor)

	@property
	def manifest(self) -> dict[str, Any]:
		return json.loads(self.manifest_bytes.decode("utf-8"))

	def entries(self) -> list[tuple[str, bytes]]:
		"""All archive members except the manifest, in archive order."""
		out: list[tuple[str, bytes]] = [(self.module_path, self.artifact)]
		for r in self.resources:
			out.append((f"{RESOURCES_DIR}/{r.path}", r.data))
		return sorted(out, key=lambda e: e[0])


def module_archive_path(descriptor: PackageDescriptor) -> str:
	host = host_platform_for_triple(descriptor.host_triple)
	return f"{host.key}/lib/{host.library_filename(descriptor.name)}"


def archive_filename(descriptor: PackageDescriptor, api_version: object) -> str:
	"""Deterministic output file name for one (package, host-API version) pair."""
	host = host_platform_for_triple(descriptor.host_triple)
	return f"{descriptor.name}-{descriptor.numeric_id}-{descriptor.version}-api{api_version}-{host.key}{ARCHIVE_SUFFIX}"


def normalize_resource_path(path_str: str) -> str:
	p = PurePosixPath(path_str.replace("\\", "/"))
	if p.is_absolute():
		raise LayoutConflictError(message=f"resource path must be relative, got: {path_str}", path=path_str)
	if not p.parts or str(p) == ".":
		raise LayoutConflictError(message=f"resource path must be non-empty, got: {path_str!r}", path=path_str)
	if any(part in (".", "..") for part in path_str.replace("\\", "/").split("/")):
		raise LayoutConflictError(message=f"resource path must not contain '.' or '..', got: {path_str}", path=path_str)
	return str(p)


def _check_layout(paths: Sequence[str]) -> None:
	"""
	Reject archive paths that would collide on extraction: exact duplicates,
	names differing only by case, and a file that is also used as a directory.
	"""
	seen: dict[str, str] = {}
	for p in paths:
		key = p.casefold()
		prior = seen.get(key)
		if prior is not None:
			if prior == p:
				raise LayoutConflictError(message=f"duplicate archive path '{p}'", path=p)
			raise LayoutConflictError(message=f"archive paths '{prior}' and '{p}' differ only by case", path=p)
		seen[key] = p
	for p in paths:
		parts = p.casefold().split("/")
		for i in range(1, len(parts)):
			prefix = "/".join(parts[:i])
			if prefix in seen:
				raise LayoutConflictError(
					message=f"archive path '{seen[prefix]}' is both a file and a directory of '{p}'",
					path=p,
				)


def build_manifest(
	descriptor: PackageDescriptor,
	listing: Iterable[ResourceEntry],
	signature: SignatureBlock,
	host_api: ApiVersionEntry | None,
) -> dict[str, Any]:
	return {
		"format": MANIFEST_FORMAT,
		"format_version": FORMAT_VERSION,
		"descriptor": descriptor.to_dict(),
		"host_api": host_api.to_dict() if host_api is not None else None,
		"resources": [e.to_dict() for e in sorted(listing, key=lambda e: e.path)],
		"signature": signature_block_to_dict(signature),
	}


def assemble(
	descriptor: PackageDescriptor,
	artifact_bytes: bytes,
	signature: SignatureBlock,
	resources: Iterable[Resource | tuple[str, bytes]] = (),
	*,
	host_api: ApiVersionEntry | None = None,
) -> PackageArchive:
	"""
	Lay out the archive in memory and serialize its manifest.

	Raises LayoutConflictError for invalid or colliding resource paths.
	"""
	if not artifact_bytes:
		raise IntegrityError(message="artifact is empty")

	res_list: list[Resource] = []
	for r in resources:
		if not isinstance(r, Resource):
			rel, data = r
			r = Resource(path=rel, data=bytes(data))
		res_list.append(Resource(path=normalize_resource_path(r.path), data=r.data))

	module_path = module_archive_path(descriptor)
	listing: list[ResourceEntry] = [
		ResourceEntry(path=module_path, size=len(artifact_bytes), sha256=f"sha256:{sha256_hex(artifact_bytes)}", kind="module")
	]
	for r in res_list:
		listing.append(
			ResourceEntry(
				path=f"{RESOURCES_DIR}/{r.path}",
				size=len(r.data),
				sha256=f"sha256:{sha256_hex(r.data)}",
				kind="resource",
			)
		)
	_check_layout([r.path for r in res_list])
	_check_layout([MANIFEST_PATH] + [e.path for e in listing])

	manifest_bytes = canonical_json_bytes(build_manifest(descriptor, listing, signature, host_api))
	return PackageArchive(
		descriptor=descriptor,
		artifact=bytes(artifact_bytes),
		signature=signature,
		resources=tuple(sorted(res_list, key=lambda r: r.path)),
		host_api=host_api,
		manifest_bytes=manifest_bytes,
	)


def _zipinfo(name: str) -> zipfile.ZipInfo:
	zi = zipfile.ZipInfo(filename=name)
	zi.date_time = (1980, 1, 1, 0, 0, 0)
	zi.external_attr = 0o644 << 16
	return zi


def _write_zip(path: Path, archive: PackageArchive) -> None:
	with zipfile.ZipFile(path, mode="w") as zf:
		zf.writestr(_zipinfo(MANIFEST_PATH), archive.manifest_bytes, compress_type=zipfile.ZIP_STORED)
		for name, data in archive.entries():
			zf.writestr(_zipinfo(name), data, compress_type=zipfile.ZIP_STORED)


def write_archive(archive: PackageArchive, out_path: Path, *, overwrite: bool = False) -> Path:
	"""
	Commit `archive` to `out_path` atomically.

	The zip is written in a staging directory in the same directory as
	`out_path` (same filesystem), then renamed into place. With
	`overwrite=False` an existing output raises CollisionError; the check and
	the commit are one atomic link operation, so concurrent writers cannot both
	win.
	"""
	out_path = Path(out_path)
	out_path.parent.mkdir(parents=True, exist_ok=True)
	if not overwrite and out_path.exists():
		raise CollisionError(message="output archive already exists", path=str(out_path))

	stage_dir = Path(tempfile.mkdtemp(prefix=".simpack-stage-", dir=out_path.parent))
	try:
		staged = stage_dir / out_path.name
		_write_zip(staged, archive)
		if overwrite:
			os.replace(staged, out_path)
		else:
			try:
				os.link(staged, out_path)
			except FileExistsError as err:
				raise CollisionError(message="output archive already exists", path=str(out_path)) from err
	finally:
		shutil.rmtree(stage_dir, ignore_errors=True)
	logger.info("wrote %s (%d bytes)", out_path, out_path.stat().st_size)
	return out_path


def _manifest_from_bytes(manifest_bytes: bytes) -> dict[str, Any]:
	try:
		obj = json.loads(manifest_bytes.decode("utf-8"))
	except (UnicodeDecodeError, json.JSONDecodeError) as err:
		raise IntegrityError(message=f"manifest is not valid JSON: {err}", path=MANIFEST_PATH) from err
	if not isinstance(obj, dict):
		raise IntegrityError(message="manifest must be a JSON object", path=MANIFEST_PATH)
	if obj.get("format") != MANIFEST_FORMAT:
		raise IntegrityError(message="not a simpack manifest", path=MANIFEST_PATH)
	fv = obj.get("format_version")
	if not isinstance(fv, int) or isinstance(fv, bool):
		raise IntegrityError(message="manifest format_version must be an integer", path=MANIFEST_PATH)
	if fv > FORMAT_VERSION:
		raise IntegrityError(message=f"unsupported manifest format_version {fv} (upgrade simpack?)", path=MANIFEST_PATH)
	return obj


def _host_api_from_dict(raw: Any) -> ApiVersionEntry | None:
	if raw is None:
		return None
	if not isinstance(raw, Mapping):
		raise IntegrityError(message="manifest host_api must be an object or null", path=MANIFEST_PATH)
	try:
		return ApiVersionEntry(
			version=SemVer.parse(str(raw.get("version"))),
			feature_flags=frozenset(raw.get("feature_flags") or ()),
			min_supported=bool(raw.get("min_supported", False)),
			forward_compatible=bool(raw.get("forward_compatible", True)),
			removed_flags=frozenset(raw.get("removed_flags") or ()),
		)
	except ValueError as err:
		raise IntegrityError(message=f"manifest host_api is invalid: {err}", path=MANIFEST_PATH) from err


def read_archive(path: Path) -> PackageArchive:
	"""
	Load an archive and check it against its own manifest listing.

	Sizes and hashes of every listed member are verified, and unlisted members
	are rejected. The signature itself is checked by `simpack.sign.verify`.
	"""
	try:
		zf = zipfile.ZipFile(path)
	except (OSError, zipfile.BadZipFile) as err:
		raise IntegrityError(message=f"not a package archive: {err}", path=str(path)) from err
	with zf:
		names = zf.namelist()
		if len(set(names)) != len(names):
			raise IntegrityError(message="archive contains duplicate members", path=str(path))
		if MANIFEST_PATH not in names:
			raise IntegrityError(message="archive is missing manifest.json", path=str(path))
		manifest = _manifest_from_bytes(zf.read(MANIFEST_PATH))

		try:
			descriptor = descriptor_from_dict(manifest.get("descriptor") or {})
		except ValidationError as err:
			raise IntegrityError(message=f"manifest descriptor is invalid: {err.message}", field=err.field) from err
		signature = signature_block_from_dict(manifest.get("signature") or {})
		host_api = _host_api_from_dict(manifest.get("host_api"))

		listing = manifest.get("resources")
		if not isinstance(listing, list):
			raise IntegrityError(message="manifest resources must be an array", path=MANIFEST_PATH)
		listed: set[str] = set()
		module_path = module_archive_path(descriptor)
		artifact: bytes | None = None
		resources: list[Resource] = []
		for raw in listing:
			if not isinstance(raw, dict) or not isinstance(raw.get("path"), str):
				raise IntegrityError(message="manifest resource entry must have a path", path=MANIFEST_PATH)
			name = raw["path"]
			if name not in names:
				raise IntegrityError(message="listed member missing from archive", path=name)
			data = zf.read(name)
			if raw.get("size") != len(data):
				raise IntegrityError(message="member size does not match manifest", path=name)
			got = f"sha256:{sha256_hex(data)}"
			if raw.get("sha256") != got:
				raise IntegrityError(message="member sha256 does not match manifest", path=name, sha256_expected=raw.get("sha256"), sha256_got=got)
			listed.add(name)
			if name == module_path:
				artifact = data
			elif name.startswith(RESOURCES_DIR + "/"):
				resources.append(Resource(path=name[len(RESOURCES_DIR) + 1 :], data=data))
			else:
				raise IntegrityError(message="member outside the archive layout", path=name)

		unlisted = sorted(set(names) - listed - {MANIFEST_PATH})
		if unlisted:
			raise IntegrityError(message=f"archive contains unlisted members: {', '.join(unlisted)}", path=str(path))
		if artifact is None:
			raise IntegrityError(message="archive does not contain the module binary", path=module_path)

		return PackageArchive(
			descriptor=descriptor,
			artifact=artifact,
			signature=signature,
			resources=tuple(sorted(resources, key=lambda r: r.path)),
			host_api=host_api,
			manifest_bytes=zf.read(MANIFEST_PATH),
		)
