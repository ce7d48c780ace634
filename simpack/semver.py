# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Semantic versions (SemVer 2.0.0).

Used both for package versions and for host-API versions. Ordering follows
SemVer precedence: numeric core, then pre-release (a release sorts after any
of its pre-releases), build metadata ignored.
"""

from __future__ import annotations

import functools
import re
from dataclasses import dataclass

_SEMVER_RE = re.compile(
	r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
	r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
	r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)


def _cmp_prerelease(a: tuple[str, ...], b: tuple[str, ...]) -> int:
	if a == b:
		return 0
	if not a:
		return 1
	if not b:
		return -1
	for x, y in zip(a, b):
		if x == y:
			continue
		xd, yd = x.isdigit(), y.isdigit()
		if xd and yd:
			return -1 if int(x) < int(y) else 1
		if xd:
			return -1
		if yd:
			return 1
		return -1 if x < y else 1
	return -1 if len(a) < len(b) else 1


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class SemVer:
	major: int
	minor: int
	patch: int
	prerelease: tuple[str, ...] = ()
	build: tuple[str, ...] = ()

	@classmethod
	def parse(cls, text: str) -> "SemVer":
		"""Parse `text`; raises ValueError when it is not a valid semantic version."""
		if not isinstance(text, str):
			raise ValueError(f"version must be a string, got {type(text).__name__}")
		m = _SEMVER_RE.match(text.strip())
		if m is None:
			raise ValueError(f"invalid semantic version: {text!r}")
		pre = tuple(m.group(4).split(".")) if m.group(4) else ()
		build = tuple(m.group(5).split(".")) if m.group(5) else ()
		return cls(int(m.group(1)), int(m.group(2)), int(m.group(3)), pre, build)

	@property
	def core(self) -> tuple[int, int, int]:
		return (self.major, self.minor, self.patch)

	@property
	def is_prerelease(self) -> bool:
		return bool(self.prerelease)

	def _cmp(self, other: "SemVer") -> int:
		if self.core != other.core:
			return -1 if self.core < other.core else 1
		return _cmp_prerelease(self.prerelease, other.prerelease)

	def __eq__(self, other: object) -> bool:
		if not isinstance(other, SemVer):
			return NotImplemented
		return self._cmp(other) == 0

	def __lt__(self, other: "SemVer") -> bool:
		if not isinstance(other, SemVer):
			return NotImplemented
		return self._cmp(other) < 0

	def __hash__(self) -> int:
		return hash((self.core, self.prerelease))

	def __str__(self) -> str:
		out = f"{self.major}.{self.minor}.{self.patch}"
		if self.prerelease:
			out += "-" + ".".join(self.prerelease)
		if self.build:
			out += "+" + ".".join(self.build)
		return out


def parse_version(value: "str | SemVer") -> SemVer:
	if isinstance(value, SemVer):
		return value
	return SemVer.parse(value)
