# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import pytest

from simpack.semver import SemVer, parse_version


def test_semver_parse_and_str_roundtrip() -> None:
	v = SemVer.parse("6.0.185")
	assert (v.major, v.minor, v.patch) == (6, 0, 185)
	assert str(v) == "6.0.185"
	assert str(SemVer.parse("1.2.3-rc.1+build.7")) == "1.2.3-rc.1+build.7"


@pytest.mark.parametrize("text", ["", "6", "6.0", "06.0.1", "1.2.3.4", "v1.2.3", "1.2.x"])
def test_semver_rejects_malformed(text: str) -> None:
	with pytest.raises(ValueError):
		SemVer.parse(text)


def test_semver_precedence_is_numeric_not_lexical() -> None:
	assert SemVer.parse("6.0.99") < SemVer.parse("6.0.163")
	assert SemVer.parse("6.0.191") < SemVer.parse("7.0.0")
	assert SemVer.parse("7.28.0") < SemVer.parse("7.38.0")


def test_semver_prerelease_sorts_before_release() -> None:
	assert SemVer.parse("7.0.0-alpha") < SemVer.parse("7.0.0")
	assert SemVer.parse("7.0.0-alpha") < SemVer.parse("7.0.0-alpha.1")
	assert SemVer.parse("7.0.0-alpha.2") < SemVer.parse("7.0.0-alpha.10")
	assert SemVer.parse("7.0.0-1") < SemVer.parse("7.0.0-alpha")
	assert SemVer.parse("7.0.0-rc.1").is_prerelease
	assert not SemVer.parse("7.0.0").is_prerelease


def test_semver_build_metadata_is_ignored_for_equality() -> None:
	a = SemVer.parse("1.0.0+a")
	b = SemVer.parse("1.0.0+b")
	assert a == b
	assert hash(a) == hash(b)
	assert len({a, b}) == 1


def test_parse_version_accepts_semver_instances() -> None:
	v = SemVer.parse("6.0.173")
	assert parse_version(v) is v
	assert parse_version(" 6.0.173 ") == v
