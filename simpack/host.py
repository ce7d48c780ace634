# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Host platform conventions for simulator modules.

The simulator loads modules from a per-host directory (`linux64`, `win64`)
and expects the platform's native dynamic-library suffix.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class HostPlatform:
	key: str  # "linux64" | "win64"
	lib_suffix: str

	def library_filename(self, module_name: str) -> str:
		return f"{module_name}{self.lib_suffix}"


LINUX64 = HostPlatform(key="linux64", lib_suffix=".so")
WIN64 = HostPlatform(key="win64", lib_suffix=".dll")

_ARCHES = ("x86_64", "amd64")


def host_platform_for_triple(host_triple: str) -> HostPlatform:
	"""
	Map a host triple (e.g. `x86_64-unknown-linux-gnu`, `x86_64-pc-windows-msvc`,
	or the short forms `x86_64-linux` / `x86_64-windows`) to its platform.

	Raises ValueError for unsupported hosts.
	"""
	parts = [p for p in host_triple.strip().lower().split("-") if p]
	if not parts:
		raise ValueError("host triple must be non-empty")
	if parts[0] not in _ARCHES:
		raise ValueError(f"unsupported host architecture '{parts[0]}' (simulator hosts are 64-bit x86)")
	if "linux" in parts:
		return LINUX64
	if "windows" in parts or "win64" in parts:
		return WIN64
	raise ValueError(f"unsupported host operating system in '{host_triple}'")

