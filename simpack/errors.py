# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class SimpackError(Exception):
	"""
	A structured, serializable error for the packaging pipeline.

	Every error carries a stable `reason_code` so reports stay machine-readable,
	plus whatever context the raising stage knows about.
	"""

	message: str
	reason_code: str = "SIMPACK_ERROR"
	field: str | None = None
	stage: str | None = None
	path: str | None = None
	host_version: str | None = None
	sha256_expected: str | None = None
	sha256_got: str | None = None

	def __str__(self) -> str:
		return self.format_human()

	def to_dict(self) -> dict[str, Any]:
		return {
			"reason_code": self.reason_code,
			"message": self.message,
			"field": self.field,
			"stage": self.stage,
			"path": self.path,
			"host_version": self.host_version,
			"sha256_expected": self.sha256_expected,
			"sha256_got": self.sha256_got,
		}

	def format_human(self) -> str:
		parts: list[str] = [f"[{self.reason_code}] {self.message}"]
		if self.stage:
			parts.append(f"stage={self.stage}")
		if self.field:
			parts.append(f"field={self.field}")
		if self.host_version:
			parts.append(f"host_version={self.host_version}")
		if self.path:
			parts.append(f"path={self.path}")
		if self.sha256_expected or self.sha256_got:
			parts.append(f"sha256_expected={self.sha256_expected}")
			parts.append(f"sha256_got={self.sha256_got}")
		return " ".join(parts)


@dataclass(frozen=True)
class ValidationError(SimpackError):
	"""Bad or missing descriptor/config field. `field` names the offender."""

	reason_code: str = "VALIDATION_ERROR"


@dataclass(frozen=True)
class UnsupportedVersionError(SimpackError):
	reason_code: str = "UNSUPPORTED_VERSION"


@dataclass(frozen=True)
class SigningKeyError(SimpackError):
	"""Signing key material is absent or malformed."""

	reason_code: str = "SIGNING_KEY_ERROR"


@dataclass(frozen=True)
class IntegrityError(SimpackError):
	reason_code: str = "INTEGRITY_ERROR"


@dataclass(frozen=True)
class LayoutConflictError(SimpackError):
	reason_code: str = "LAYOUT_CONFLICT"


@dataclass(frozen=True)
class CollisionError(SimpackError):
	"""The output archive path already exists and overwriting is disabled."""

	reason_code: str = "OUTPUT_COLLISION"


@dataclass(frozen=True)
class BuildFailed(SimpackError):
	"""
	Orchestrator-level wrapper: which stage aborted, and the original error.

	`cause` is the underlying error verbatim; it is also chained as `__cause__`
	by the orchestrator.
	"""

	reason_code: str = "BUILD_FAILED"
	cause: BaseException | None = None

	def to_dict(self) -> dict[str, Any]:
		out = super().to_dict()
		cause = self.cause
		if isinstance(cause, SimpackError):
			out["cause"] = cause.to_dict()
		elif cause is not None:
			out["cause"] = {"reason_code": "INTERNAL_ERROR", "message": str(cause), "type": type(cause).__name__}
		else:
			out["cause"] = None
		return out

	def format_human(self) -> str:
		head = f"[{self.reason_code}] build failed at stage {self.stage}: {self.message}"
		if isinstance(self.cause, SimpackError):
			return f"{head} <- {self.cause.format_human()}"
		return head
