# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
simpack: build, sign and package simulator modules.

Pipeline components:
  descriptor: metadata resolution (base metadata + SIMPACK_* overrides)
  matrix: host-API version matrix and build-target resolution
  sign: artifact signing and verification
  archive_v1: deterministic package archive assembly
  build: staged build orchestrator

The CLI entrypoint is `simpack.cli:main`.
"""

__all__ = ["descriptor", "matrix", "sign", "archive_v1", "build"]
