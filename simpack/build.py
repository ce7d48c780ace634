# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Build orchestrator.

One build = one package against one host-API version, run as a strictly
ordered pipeline:

	Resolving -> MatrixCheck -> Compiling -> Signing -> Assembling -> Done

Any failure aborts the build with `BuildFailed(stage, cause)`; no stage is
retried and no output archive is left behind. Independent builds may run
concurrently (`build_many`); they share only the read-only version matrix.
"""

from __future__ import annotations

import enum
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

from simpack.archive_v1 import PackageArchive, Resource, archive_filename, assemble, write_archive
from simpack.buildcfg_v0 import BuildConfig, load_build_config
from simpack.descriptor import PackageDescriptor, resolve
from simpack.errors import BuildFailed, IntegrityError, SimpackError
from simpack.keys import SigningKey, load_signing_key
from simpack.ledger_v0 import check_release, load_ledger, record_release, rollback_release
from simpack.matrix import BuildTarget, VersionMatrix, compile_defines
from simpack.matrix_table import default_matrix, load_matrix_table
from simpack.sign import sign
from simpack.toolchain import CommandToolchain, CompileRequest, PrebuiltToolchain, Toolchain, ToolchainError

logger = logging.getLogger(__name__)


class BuildStage(str, enum.Enum):
	RESOLVING = "Resolving"
	MATRIX_CHECK = "MatrixCheck"
	COMPILING = "Compiling"
	SIGNING = "Signing"
	ASSEMBLING = "Assembling"
	DONE = "Done"
	FAILED = "Failed"


@dataclass(frozen=True)
class BuildResult:
	archive: PackageArchive
	path: Path
	target: BuildTarget


class _Pipeline:
	"""Tracks the current stage and wraps stage failures."""

	def __init__(self, label: str) -> None:
		self.label = label
		self.stage = BuildStage.RESOLVING

	def enter(self, stage: BuildStage) -> None:
		logger.debug("%s: %s -> %s", self.label, self.stage.value, stage.value)
		self.stage = stage

	def fail(self, err: Exception) -> BuildFailed:
		message = err.message if isinstance(err, SimpackError) else str(err)
		logger.error("%s: build failed at %s: %s", self.label, self.stage.value, message)
		return BuildFailed(message=message, stage=self.stage.value, cause=err)


def _toolchain_for(config: BuildConfig) -> Toolchain:
	if config.artifact is None:
		raise ToolchainError("build configuration names no artifact and no toolchain was given")
	if config.command is not None:
		return CommandToolchain(command=config.command, artifact=config.artifact)
	return PrebuiltToolchain(config.artifact)


def _read_resources(config: BuildConfig) -> list[Resource]:
	out: list[Resource] = []
	for spec in config.resources:
		if not spec.source.is_file():
			raise IntegrityError(message="resource source file not found", path=str(spec.source))
		out.append(Resource(path=spec.path, data=spec.source.read_bytes()))
	return out


def build(
	source_location: Path,
	target_version: str,
	signing_key: SigningKey | Path | None,
	environment_overrides: Mapping[str, str] | None = None,
	*,
	registry: VersionMatrix | None = None,
	toolchain: Toolchain | None = None,
	out_dir: Path | None = None,
	overwrite: bool = False,
	strict_overrides: bool = False,
	ledger_path: Path | None = None,
	extra_resources: Sequence[Resource] = (),
) -> BuildResult:
	"""
	Run one build and commit its archive.

	`signing_key` is a loaded handle or a path to key material. Output goes to
	`out_dir / archive_filename(...)` (default: `<source>/dist`).
	"""
	source_location = Path(source_location)
	pipe = _Pipeline(label=f"{source_location}@{target_version}")
	registry = registry if registry is not None else default_matrix()

	try:
		pipe.enter(BuildStage.RESOLVING)
		config = load_build_config(source_location)
		descriptor: PackageDescriptor = resolve(config.package, environment_overrides, strict=strict_overrides)
		ledger = load_ledger(ledger_path) if ledger_path is not None else None
		if ledger is not None:
			check_release(ledger, descriptor)

		pipe.enter(BuildStage.MATRIX_CHECK)
		target = registry.resolve(target_version)
		defines = tuple(compile_defines(target.entry))

		pipe.enter(BuildStage.COMPILING)
		tc = toolchain if toolchain is not None else _toolchain_for(config)
		request = CompileRequest(
			source_dir=config.source_dir,
			descriptor=descriptor,
			host_api=target.entry,
			defines=defines,
		)
		artifact_path = tc.compile(request)
		artifact_bytes = Path(artifact_path).read_bytes()

		pipe.enter(BuildStage.SIGNING)
		key = signing_key if not isinstance(signing_key, Path) else load_signing_key(signing_key)
		block = sign(artifact_bytes, descriptor, key)

		pipe.enter(BuildStage.ASSEMBLING)
		resources = _read_resources(config) + list(extra_resources)
		archive = assemble(descriptor, artifact_bytes, block, resources, host_api=target.entry)
		dest_dir = out_dir if out_dir is not None else config.source_dir / "dist"
		out_path = dest_dir / archive_filename(descriptor, target.requested)
		# The archive is committed last; a ledger update that precedes it is
		# rolled back if the commit fails.
		prior = record_release(ledger_path, descriptor) if ledger_path is not None else None
		try:
			write_archive(archive, out_path, overwrite=overwrite)
		except Exception:
			if ledger_path is not None:
				rollback_release(ledger_path, descriptor, prior)
			raise
	except Exception as err:
		raise pipe.fail(err) from err

	pipe.enter(BuildStage.DONE)
	logger.info("built %s %s for host API %s -> %s", descriptor.name, descriptor.version, target.entry.version, out_path)
	return BuildResult(archive=archive, path=out_path, target=target)


@dataclass(frozen=True)
class BuildOptions:
	source_location: Path
	target_version: str
	key_path: Path | None
	environment_overrides: dict[str, str] = field(default_factory=dict)
	out_dir: Path | None = None
	overwrite: bool = False
	strict_overrides: bool = False
	ledger_path: Path | None = None
	matrix_path: Path | None = None


@dataclass(frozen=True)
class BuildReport:
	ok: bool
	stage: str
	target_version: str
	resolved_version: str | None
	archive_path: str | None
	kid: str | None
	warnings: list[str]
	errors: list[SimpackError]

	def to_dict(self) -> dict[str, Any]:
		return {
			"ok": self.ok,
			"stage": self.stage,
			"target_version": self.target_version,
			"resolved_version": self.resolved_version,
			"archive_path": self.archive_path,
			"kid": self.kid,
			"warnings": list(self.warnings),
			"errors": [e.to_dict() for e in self.errors],
		}


def build_v0(opts: BuildOptions, *, registry: VersionMatrix | None = None, toolchain: Toolchain | None = None) -> BuildReport:
	"""Report-style wrapper around `build` (never raises for build failures)."""
	try:
		if registry is None and opts.matrix_path is not None:
			registry = load_matrix_table(opts.matrix_path)
		result = build(
			opts.source_location,
			opts.target_version,
			opts.key_path,
			opts.environment_overrides,
			registry=registry,
			toolchain=toolchain,
			out_dir=opts.out_dir,
			overwrite=opts.overwrite,
			strict_overrides=opts.strict_overrides,
			ledger_path=opts.ledger_path,
		)
	except BuildFailed as err:
		return BuildReport(
			ok=False,
			stage=err.stage or BuildStage.FAILED.value,
			target_version=opts.target_version,
			resolved_version=None,
			archive_path=None,
			kid=None,
			warnings=[],
			errors=[err],
		)
	except (ValueError, OSError) as err:
		# Matrix table failed to load before the pipeline started.
		wrapped = BuildFailed(message=str(err), stage=BuildStage.MATRIX_CHECK.value, cause=err)
		return BuildReport(
			ok=False,
			stage=BuildStage.MATRIX_CHECK.value,
			target_version=opts.target_version,
			resolved_version=None,
			archive_path=None,
			kid=None,
			warnings=[],
			errors=[wrapped],
		)
	warning = result.target.warning
	return BuildReport(
		ok=True,
		stage=BuildStage.DONE.value,
		target_version=opts.target_version,
		resolved_version=str(result.target.entry.version),
		archive_path=str(result.path),
		kid=result.archive.signature.kid,
		warnings=[warning] if warning else [],
		errors=[],
	)


def build_many(
	jobs: Sequence[BuildOptions],
	*,
	registry: VersionMatrix | None = None,
	max_workers: int | None = None,
) -> list[BuildReport]:
	"""
	Run independent builds concurrently. Reports come back in job order; one
	failing build does not affect the others.
	"""
	shared = registry if registry is not None else default_matrix()
	if not jobs:
		return []
	with ThreadPoolExecutor(max_workers=max_workers or min(8, len(jobs))) as pool:
		futures = [pool.submit(build_v0, job, registry=shared) for job in jobs]
		return [f.result() for f in futures]
