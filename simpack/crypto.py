# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import base64
import hashlib
import json
from typing import Any


def sha256_bytes(data: bytes) -> bytes:
	return hashlib.sha256(data).digest()


def sha256_hex(data: bytes) -> str:
	return hashlib.sha256(data).hexdigest()


def b64_encode(data: bytes) -> str:
	return base64.b64encode(data).decode("ascii")


def b64_decode(text: str) -> bytes:
	return base64.b64decode(text.encode("ascii"), validate=True)


def canonical_json_bytes(obj: Any) -> bytes:
	"""
	Render JSON deterministically.

Rules:
	- UTF-8
	- no insignificant whitespace
	- object keys sorted by code point
	"""
	return json.dumps(obj, sort_keys=True, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def compute_kid(algo: str, identity: bytes) -> str:
	"""
	Compute the key id (kid) for a signer identity.

	Pinned scheme:
	  kid = "<algo>:" + base64(sha256(identity))
	"""
	return f"{algo}:" + b64_encode(hashlib.sha256(identity).digest())
