# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from simpack.archive_v1 import read_archive
from simpack.build import BuildOptions, build_many, build_v0
from simpack.crypto import b64_decode
from simpack.descriptor import OVERRIDE_PREFIX, collect_environment_overrides
from simpack.errors import SimpackError
from simpack.keygen import KeygenOptions, keygen_v0
from simpack.keys import SignatureAlgorithm
from simpack.matrix import VersionMatrix, compile_defines
from simpack.matrix_table import MatrixRow, append_matrix_row, default_matrix, load_matrix_table
from simpack.sign import verify


def _build_parser() -> argparse.ArgumentParser:
	p = argparse.ArgumentParser(prog="simpack", description="Build, sign and package simulator modules")
	p.add_argument("-v", "--verbose", action="count", default=0, help="Increase log verbosity (-v info, -vv debug)")
	sub = p.add_subparsers(dest="cmd", required=True)

	build = sub.add_parser("build", help="Build a signed package archive for one or more host API versions")
	build.add_argument("source", type=Path, help="Source directory containing simpack.json")
	build.add_argument(
		"--host-api",
		dest="host_apis",
		action="append",
		required=True,
		help="Target host API version (repeatable; one archive per version)",
	)
	build.add_argument("--key", type=Path, required=True, help="Signing key (base64 Ed25519 seed or PKCS#8 PEM)")
	build.add_argument("--out-dir", type=Path, default=None, help="Output directory (default: <source>/dist)")
	build.add_argument("--overwrite", action="store_true", help="Atomically replace an existing archive")
	build.add_argument("--strict-overrides", action="store_true", help="Reject unrecognized SIMPACK_* environment keys")
	build.add_argument("--ledger", type=Path, default=None, help="Release ledger to check and update")
	build.add_argument("--matrix", type=Path, default=None, help="Host API matrix table (default: built-in table)")
	build.add_argument("--jobs", type=int, default=None, help="Concurrent builds when several --host-api are given")
	build.add_argument("--json", action="store_true", help="Emit machine-readable JSON report")

	verify_p = sub.add_parser("verify", help="Verify a package archive's integrity and signature")
	verify_p.add_argument("archive", type=Path)
	verify_p.add_argument(
		"--trusted-identity",
		dest="trusted",
		action="append",
		default=None,
		help="Base64 signer identity to accept (repeatable); default accepts the embedded identity",
	)
	verify_p.add_argument("--json", action="store_true", help="Emit machine-readable JSON")

	inspect = sub.add_parser("inspect", help="Print an archive's manifest")
	inspect.add_argument("archive", type=Path)

	keygen = sub.add_parser("keygen", help="Generate a private signing key file")
	keygen.add_argument("--out", type=Path, required=True, help="Output path for the key file")
	keygen.add_argument(
		"--algorithm",
		choices=[a.value for a in SignatureAlgorithm],
		default=SignatureAlgorithm.ED25519.value,
	)
	keygen.add_argument("--print-identity", action="store_true", help="Print public identity (base64) to stdout")
	keygen.add_argument("--print-kid", action="store_true", help="Print kid to stdout")
	keygen.add_argument("--force", action="store_true", help="Overwrite an existing key file")

	matrix = sub.add_parser("matrix", help="Host API version matrix queries")
	matrix.add_argument("--matrix", type=Path, default=None, help="Host API matrix table (default: built-in table)")
	matrix_sub = matrix.add_subparsers(dest="matrix_cmd", required=True)

	m_list = matrix_sub.add_parser("list", help="List registered host API versions")
	m_list.add_argument("--since", default=None, help="Only versions at or after this one")
	m_list.add_argument("--include-prerelease", action="store_true")
	m_list.add_argument("--json", action="store_true")

	m_resolve = matrix_sub.add_parser("resolve", help="Resolve a requested version to its build target")
	m_resolve.add_argument("version")
	m_resolve.add_argument("--json", action="store_true")

	m_diff = matrix_sub.add_parser("diff", help="Feature flags changed between two registered versions")
	m_diff.add_argument("older")
	m_diff.add_argument("newer")
	m_diff.add_argument("--json", action="store_true")

	m_changes = matrix_sub.add_parser("changes", help="Feature changes between consecutive versions")
	m_changes.add_argument("--json", action="store_true")

	m_append = matrix_sub.add_parser("append", help="Append a host release to a persisted matrix table")
	m_append.add_argument("version")
	m_append.add_argument("--add", dest="added", action="append", default=[], help="Feature flag added (repeatable)")
	m_append.add_argument("--remove", dest="removed", action="append", default=[], help="Feature flag removed (repeatable)")
	m_append.add_argument("--not-forward-compatible", action="store_true")
	return p


def _configure_logging(verbosity: int) -> None:
	level = logging.WARNING
	if verbosity == 1:
		level = logging.INFO
	elif verbosity >= 2:
		level = logging.DEBUG
	logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def _load_matrix(path: Path | None) -> VersionMatrix:
	return load_matrix_table(path) if path is not None else default_matrix()


def _emit(obj: object, *, as_json: bool) -> None:
	if as_json:
		print(json.dumps(obj, sort_keys=True, separators=(",", ":")))
	else:
		print(json.dumps(obj, indent=2, sort_keys=True))


def _cmd_build(args: argparse.Namespace) -> int:
	overrides = collect_environment_overrides(os.environ)
	if args.strict_overrides:
		overrides = {k: v for k, v in os.environ.items() if k.startswith(OVERRIDE_PREFIX)}
	jobs = [
		BuildOptions(
			source_location=args.source,
			target_version=v,
			key_path=args.key,
			environment_overrides=overrides,
			out_dir=args.out_dir,
			overwrite=bool(args.overwrite),
			strict_overrides=bool(args.strict_overrides),
			ledger_path=args.ledger,
		)
		for v in args.host_apis
	]
	if len(jobs) == 1:
		reports = [build_v0(jobs[0], registry=_load_matrix(args.matrix))]
	else:
		reports = build_many(jobs, registry=_load_matrix(args.matrix), max_workers=args.jobs)

	ok = all(r.ok for r in reports)
	if args.json:
		print(json.dumps({"ok": ok, "builds": [r.to_dict() for r in reports]}, sort_keys=True, separators=(",", ":")))
		return 0 if ok else 2
	for r in reports:
		for w in r.warnings:
			print(f"warning: {w}", file=sys.stderr)
		if r.ok:
			print(r.archive_path)
			continue
		for err in r.errors:
			print(err.format_human(), file=sys.stderr)
	return 0 if ok else 2


def _cmd_verify(args: argparse.Namespace) -> int:
	trusted = None
	if args.trusted:
		try:
			trusted = [b64_decode(t) for t in args.trusted]
		except ValueError as err:
			print(f"invalid --trusted-identity: {err}", file=sys.stderr)
			return 2
	try:
		archive = read_archive(args.archive)
	except SimpackError as err:
		if args.json:
			_emit({"ok": False, "error": err.to_dict()}, as_json=True)
		else:
			print(err.format_human(), file=sys.stderr)
		return 2
	ok = verify(archive, trusted_identities=trusted)
	if args.json:
		_emit(
			{
				"ok": ok,
				"name": archive.descriptor.name,
				"version": archive.descriptor.version,
				"kid": archive.signature.kid,
			},
			as_json=True,
		)
	elif ok:
		print(f"ok: {archive.descriptor.name} {archive.descriptor.version} signed by {archive.signature.kid}")
	else:
		print(f"untrusted: signature verification failed for {args.archive}", file=sys.stderr)
	return 0 if ok else 2


def _cmd_matrix(args: argparse.Namespace) -> int:
	if args.matrix_cmd == "append":
		if args.matrix is None:
			raise ValueError("matrix append requires --matrix <table.json>")
		append_matrix_row(
			args.matrix,
			MatrixRow(
				version=args.version,
				added=tuple(args.added),
				removed=tuple(args.removed),
				forward_compatible=not args.not_forward_compatible,
			),
		)
		return 0

	registry = _load_matrix(args.matrix)
	if args.matrix_cmd == "list":
		versions = registry.versions_since(args.since, include_prerelease=bool(args.include_prerelease))
		if args.json:
			_emit([str(v) for v in versions], as_json=True)
		else:
			for v in versions:
				print(v)
		return 0

	if args.matrix_cmd == "resolve":
		target = registry.resolve(args.version)
		obj = {
			"requested": str(target.requested),
			"resolved": str(target.entry.version),
			"exact": target.exact,
			"beyond_newest": target.beyond_newest,
			"feature_flags": sorted(target.entry.feature_flags),
			"defines": compile_defines(target.entry),
		}
		_emit(obj, as_json=bool(args.json))
		return 0

	if args.matrix_cmd == "diff":
		_emit(registry.diff(args.older, args.newer).to_dict(), as_json=bool(args.json))
		return 0

	if args.matrix_cmd == "changes":
		_emit([d.to_dict() for d in registry.changes_report()], as_json=bool(args.json))
		return 0

	raise AssertionError("unreachable")


def main(argv: list[str] | None = None) -> int:
	p = _build_parser()
	args = p.parse_args(argv)
	_configure_logging(int(args.verbose))

	if args.cmd == "build":
		return _cmd_build(args)

	if args.cmd == "verify":
		return _cmd_verify(args)

	if args.cmd == "inspect":
		try:
			archive = read_archive(args.archive)
		except SimpackError as err:
			print(err.format_human(), file=sys.stderr)
			return 2
		print(json.dumps(archive.manifest, indent=2, sort_keys=True))
		return 0

	if args.cmd == "keygen":
		opts = KeygenOptions(
			out_path=args.out,
			algorithm=SignatureAlgorithm.parse(args.algorithm),
			print_identity=bool(args.print_identity),
			print_kid=bool(args.print_kid),
			force=bool(args.force),
		)
		try:
			keygen_v0(opts)
			return 0
		except Exception as err:
			p.error(str(err))
			return 2

	if args.cmd == "matrix":
		try:
			return _cmd_matrix(args)
		except SimpackError as err:
			print(err.format_human(), file=sys.stderr)
			return 2
		except ValueError as err:
			p.error(str(err))
			return 2

	raise AssertionError("unreachable")


def console_main() -> None:
	sys.exit(main())
