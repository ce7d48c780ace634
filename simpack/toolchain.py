# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Compiler/toolchain collaborators.

The pipeline never compiles anything itself. It hands a `CompileRequest`
(descriptor, resolved host API, conditional-compilation defines) to a
toolchain and receives the path of one compiled dynamic library, which it
then only reads.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

from simpack.descriptor import PackageDescriptor
from simpack.matrix import ApiVersionEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompileRequest:
	source_dir: Path
	descriptor: PackageDescriptor
	host_api: ApiVersionEntry
	defines: tuple[str, ...]


class ToolchainError(Exception):
	"""The external toolchain failed or produced no artifact."""


class Toolchain(Protocol):
	def compile(self, request: CompileRequest) -> Path:
		...


@dataclass(frozen=True)
class PrebuiltToolchain:
	"""Use an artifact that was compiled ahead of time."""

	artifact: Path

	def compile(self, request: CompileRequest) -> Path:
		path = self.artifact if self.artifact.is_absolute() else request.source_dir / self.artifact
		if not path.is_file():
			raise ToolchainError(f"compiled artifact not found: {path}")
		return path


@dataclass(frozen=True)
class CommandToolchain:
	"""
	Run an external build command, then pick up its artifact.

	The command runs in the source directory with these variables exported:
	- SIMPACK_DEFINES: space-separated conditional-compilation defines
	- SIMPACK_HOST_API: resolved host-API version
	- SIMPACK_MODULE_NAME: package name
	- SIMPACK_HOST_TRIPLE: target host triple
	"""

	command: Sequence[str]
	artifact: Path
	timeout_s: float | None = None

	def compile(self, request: CompileRequest) -> Path:
		env = dict(os.environ)
		env["SIMPACK_DEFINES"] = " ".join(request.defines)
		env["SIMPACK_HOST_API"] = str(request.host_api.version)
		env["SIMPACK_MODULE_NAME"] = request.descriptor.name
		env["SIMPACK_HOST_TRIPLE"] = request.descriptor.host_triple
		logger.info("running toolchain: %s", " ".join(self.command))
		try:
			res = subprocess.run(
				list(self.command),
				cwd=str(request.source_dir),
				env=env,
				check=False,
				capture_output=True,
				text=True,
				timeout=self.timeout_s,
			)
		except (OSError, subprocess.TimeoutExpired) as err:
			raise ToolchainError(f"toolchain command failed to run: {err}") from err
		if res.returncode != 0:
			tail = (res.stderr or res.stdout or "").strip().splitlines()[-5:]
			raise ToolchainError(f"toolchain exited with code {res.returncode}: {' | '.join(tail)}")
		return PrebuiltToolchain(self.artifact).compile(request)
