# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Host-API version matrix.

The registry maps every supported host-API version to the feature flags a
module must be compiled with to target it. It is populated once from an
ordered table and is read-only afterwards, so one instance can be shared by
concurrent builds.

Compatibility policy:
- newer host APIs are additive: a flag present in one entry stays present in
  every later entry unless that later entry lists it in `removed_flags`;
- a request that falls between two registered versions resolves to the lower
  entry only when that entry is marked `forward_compatible`;
- a request newer than the newest entry resolves to the newest entry with a
  warning.
"""

from __future__ import annotations

import bisect
import logging
import re
from dataclasses import dataclass
from typing import Iterable, Sequence

from simpack.errors import UnsupportedVersionError
from simpack.semver import SemVer, parse_version

logger = logging.getLogger(__name__)

_FLAG_RE = re.compile(r"^[a-z][a-z0-9_]*$")


@dataclass(frozen=True)
class ApiVersionEntry:
	version: SemVer
	feature_flags: frozenset[str]
	min_supported: bool = False
	forward_compatible: bool = True
	removed_flags: frozenset[str] = frozenset()

	def to_dict(self) -> dict[str, object]:
		return {
			"version": str(self.version),
			"feature_flags": sorted(self.feature_flags),
			"min_supported": self.min_supported,
			"forward_compatible": self.forward_compatible,
			"removed_flags": sorted(self.removed_flags),
		}


@dataclass(frozen=True)
class FeatureDiff:
	older: SemVer
	newer: SemVer
	added: frozenset[str]
	removed: frozenset[str]

	@property
	def empty(self) -> bool:
		return not self.added and not self.removed

	def to_dict(self) -> dict[str, object]:
		return {
			"from": str(self.older),
			"to": str(self.newer),
			"added": sorted(self.added),
			"removed": sorted(self.removed),
		}


@dataclass(frozen=True)
class BuildTarget:
	"""Outcome of resolving a requested host-API version."""

	requested: SemVer
	entry: ApiVersionEntry
	exact: bool
	beyond_newest: bool

	@property
	def warning(self) -> str | None:
		if not self.beyond_newest:
			return None
		return (
			f"host API {self.requested} is newer than the newest registered version {self.entry.version}; "
			f"building with the feature flags of {self.entry.version}"
		)


class VersionMatrix:
	def __init__(self, entries: Iterable[ApiVersionEntry] | None = None) -> None:
		self._entries: tuple[ApiVersionEntry, ...] = ()
		self._versions: tuple[SemVer, ...] = ()
		if entries is not None:
			self.register(entries)

	@property
	def entries(self) -> tuple[ApiVersionEntry, ...]:
		return self._entries

	@property
	def oldest(self) -> ApiVersionEntry:
		self._require_populated()
		return self._entries[0]

	@property
	def newest(self) -> ApiVersionEntry:
		self._require_populated()
		return self._entries[-1]

	def __len__(self) -> int:
		return len(self._entries)

	def __contains__(self, version: object) -> bool:
		if not isinstance(version, (str, SemVer)):
			return False
		try:
			v = parse_version(version)
		except ValueError:
			return False
		i = bisect.bisect_left(self._versions, v)
		return i < len(self._versions) and self._versions[i] == v

	def register(self, entries: Iterable[ApiVersionEntry]) -> None:
		"""
		Populate the registry. Entries must be strictly ascending by version and
		follow the additive policy. A registry is populated exactly once.
		"""
		if self._entries:
			raise ValueError("version matrix is already populated")
		entry_list = list(entries)
		if not entry_list:
			raise ValueError("version matrix requires at least one entry")
		for i, e in enumerate(entry_list):
			for flag in e.feature_flags | e.removed_flags:
				if not _FLAG_RE.match(flag):
					raise ValueError(f"invalid feature flag {flag!r} in entry {e.version}")
			if e.feature_flags & e.removed_flags:
				both = sorted(e.feature_flags & e.removed_flags)
				raise ValueError(f"entry {e.version} both provides and removes: {', '.join(both)}")
			if i == 0:
				continue
			prev = entry_list[i - 1]
			if e.version == prev.version:
				raise ValueError(f"duplicate host API version {e.version}")
			if e.version < prev.version:
				raise ValueError(f"host API versions must be ascending: {prev.version} before {e.version}")
			dropped = prev.feature_flags - e.feature_flags
			undeclared = dropped - e.removed_flags
			if undeclared:
				raise ValueError(
					f"entry {e.version} drops feature flag(s) without declaring them removed: {', '.join(sorted(undeclared))}"
				)
		self._entries = tuple(entry_list)
		self._versions = tuple(e.version for e in entry_list)

	def _require_populated(self) -> None:
		if not self._entries:
			raise UnsupportedVersionError(message="version matrix is empty")

	def get(self, version: "str | SemVer") -> ApiVersionEntry:
		v = parse_version(version)
		i = bisect.bisect_left(self._versions, v)
		if i < len(self._versions) and self._versions[i] == v:
			return self._entries[i]
		raise UnsupportedVersionError(message=f"host API version {v} is not registered", host_version=str(v))

	def resolve(self, requested: "str | SemVer") -> BuildTarget:
		self._require_populated()
		try:
			req = parse_version(requested)
		except ValueError as err:
			raise UnsupportedVersionError(message=str(err), host_version=str(requested)) from err

		oldest = self._entries[0]
		newest = self._entries[-1]
		if req < oldest.version:
			raise UnsupportedVersionError(
				message=f"host API {req} is older than the oldest supported version {oldest.version}",
				host_version=str(req),
			)
		if req > newest.version:
			target = BuildTarget(requested=req, entry=newest, exact=False, beyond_newest=True)
			logger.warning("%s", target.warning)
			return target

		# Greatest entry with version <= requested.
		i = bisect.bisect_right(self._versions, req) - 1
		entry = self._entries[i]
		if entry.version == req:
			return BuildTarget(requested=req, entry=entry, exact=True, beyond_newest=False)
		if not entry.forward_compatible:
			raise UnsupportedVersionError(
				message=f"host API {req} is not registered and {entry.version} is not forward-compatible",
				host_version=str(req),
			)
		logger.info("host API %s resolved to compatible entry %s", req, entry.version)
		return BuildTarget(requested=req, entry=entry, exact=False, beyond_newest=False)

	def resolve_build_target(self, requested: "str | SemVer") -> ApiVersionEntry:
		return self.resolve(requested).entry

	def diff(self, a: "str | SemVer", b: "str | SemVer") -> FeatureDiff:
		"""Feature flags that changed going from registered version `a` to `b`."""
		ea = self.get(a)
		eb = self.get(b)
		return FeatureDiff(
			older=ea.version,
			newer=eb.version,
			added=eb.feature_flags - ea.feature_flags,
			removed=ea.feature_flags - eb.feature_flags,
		)

	def changes_report(self) -> list[FeatureDiff]:
		"""Diffs between each pair of consecutive registered versions."""
		return [self.diff(p.version, c.version) for p, c in zip(self._entries, self._entries[1:])]

	def versions_since(self, floor: "str | SemVer | None" = None, *, include_prerelease: bool = False) -> list[SemVer]:
		lo = parse_version(floor) if floor is not None else None
		out: list[SemVer] = []
		for v in self._versions:
			if lo is not None and v < lo:
				continue
			if v.is_prerelease and not include_prerelease:
				continue
			out.append(v)
		return out

	def is_available(self, version: "str | SemVer", *, valid: Sequence[str] = (), invalid: Sequence[str] = ()) -> bool:
		"""
		Versioned-API gate.

		Each pattern is either an exact version ("6.0.173") or a prefix of
		version components ("6", "6.0"). A version is available when it matches
		no `invalid` pattern and, if `valid` is non-empty, at least one `valid`
		pattern.
		"""
		v = parse_version(version)
		if any(_version_matches(v, p) for p in invalid):
			return False
		if valid:
			return any(_version_matches(v, p) for p in valid)
		return True


def _version_matches(v: SemVer, pattern: str) -> bool:
	parts = pattern.strip().split(".")
	if len(parts) == 3:
		return v == SemVer.parse(pattern.strip())
	try:
		nums = [int(p) for p in parts]
	except ValueError as err:
		raise ValueError(f"invalid version pattern {pattern!r}") from err
	return list(v.core[: len(nums)]) == nums


def _define_token(text: str) -> str:
	return re.sub(r"[^A-Za-z0-9]", "_", text).upper()


def compile_defines(entry: ApiVersionEntry) -> list[str]:
	"""
	Conditional-compilation defines for building against `entry`.

	Deterministic order: version defines first, then one define per feature
	flag in sorted order.
	"""
	v = entry.version
	out = [
		f"SIMPACK_HOST_API_{v.major}_{v.minor}_{v.patch}",
		f"SIMPACK_HOST_API_MAJOR_{v.major}",
		f"SIMPACK_HOST_API_VERSION=\"{v.major}.{v.minor}.{v.patch}\"",
	]
	for flag in sorted(entry.feature_flags):
		out.append(f"SIMPACK_FEATURE_{_define_token(flag)}")
	return out
