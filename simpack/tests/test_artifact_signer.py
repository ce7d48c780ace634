# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import base64
import dataclasses
import os
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from simpack.crypto import compute_kid
from simpack.descriptor import PackageDescriptor, resolve
from simpack.errors import IntegrityError, SigningKeyError
from simpack.keys import SignatureAlgorithm, SigningKey, load_signing_key
from simpack.sign import (
	compute_digest,
	sign,
	signature_block_from_dict,
	signature_block_to_dict,
	verify_block,
)


def _descriptor(**extra: object) -> PackageDescriptor:
	base: dict[str, object] = {
		"name": "demo",
		"numeric_id": 1001,
		"version": "1.0.0",
		"host_triple": "x86_64-unknown-linux-gnu",
	}
	base.update(extra)
	return resolve(base)


def _ed25519_key() -> SigningKey:
	return SigningKey.from_ed25519_seed(os.urandom(32))


def _p256_key() -> SigningKey:
	return SigningKey.from_private_key(ec.generate_private_key(ec.SECP256R1()))


@pytest.mark.parametrize("make_key", [_ed25519_key, _p256_key])
def test_sign_then_verify(make_key) -> None:
	key = make_key()
	artifact = b"\x7fELF" + os.urandom(1024)
	d = _descriptor()
	block = sign(artifact, d, key)
	assert block.signer_identity == key.identity
	assert block.kid == key.kid
	assert verify_block(artifact, d, block)
	assert verify_block(artifact, d, block, trusted_identities=[key.identity])
	assert not verify_block(artifact, d, block, trusted_identities=[make_key().identity])


@pytest.mark.parametrize("make_key", [_ed25519_key, _p256_key])
def test_any_artifact_byte_change_breaks_verification(make_key) -> None:
	key = make_key()
	artifact = bytearray(os.urandom(256))
	d = _descriptor()
	block = sign(bytes(artifact), d, key)
	artifact[100] ^= 0x01
	assert not verify_block(bytes(artifact), d, block)


def test_descriptor_change_breaks_verification() -> None:
	key = _ed25519_key()
	artifact = os.urandom(128)
	d = _descriptor()
	block = sign(artifact, d, key)
	assert not verify_block(artifact, dataclasses.replace(d, version="1.0.1"), block)
	assert not verify_block(artifact, _descriptor(confidentiality="Internal"), block)


def test_digest_is_deterministic_and_covers_descriptor() -> None:
	artifact = b"module-bytes"
	d = _descriptor()
	assert compute_digest(artifact, d) == compute_digest(artifact, _descriptor())
	assert compute_digest(artifact, d) != compute_digest(artifact, _descriptor(build_id="b2"))
	key = _ed25519_key()
	assert sign(artifact, d, key) == sign(artifact, d, key)


def test_missing_or_foreign_key_is_a_signing_key_error() -> None:
	d = _descriptor()
	with pytest.raises(SigningKeyError):
		sign(b"x", d, None)
	with pytest.raises(SigningKeyError):
		sign(b"x", d, Ed25519PrivateKey.generate())  # type: ignore[arg-type]


def test_empty_artifact_is_an_integrity_error() -> None:
	with pytest.raises(IntegrityError):
		sign(b"", _descriptor(), _ed25519_key())


def test_invalid_descriptor_is_an_integrity_error() -> None:
	bad = dataclasses.replace(_descriptor(), numeric_id=-1)
	with pytest.raises(IntegrityError) as excinfo:
		sign(b"x", bad, _ed25519_key())
	assert excinfo.value.field == "numeric_id"


def test_signature_block_dict_roundtrip_and_kid_check() -> None:
	key = _p256_key()
	block = sign(b"payload", _descriptor(), key)
	obj = signature_block_to_dict(block)
	assert obj["algorithm"] == "ecdsa-p256-sha256"
	assert obj["digest"].startswith("sha256:")
	assert obj["kid"] == compute_kid("ecdsa-p256-sha256", key.identity)
	assert signature_block_from_dict(obj) == block
	obj["kid"] = "ed25519:AAAA"
	with pytest.raises(IntegrityError):
		signature_block_from_dict(obj)
	with pytest.raises(IntegrityError):
		signature_block_from_dict({**signature_block_to_dict(block), "digest": "md5:00"})


def test_seed_must_be_32_bytes() -> None:
	with pytest.raises(SigningKeyError):
		SigningKey.from_ed25519_seed(b"short")


def test_load_seed_file(tmp_path: Path) -> None:
	seed = os.urandom(32)
	path = tmp_path / "key.seed"
	path.write_text(base64.b64encode(seed).decode("ascii") + "\n", encoding="utf-8")
	key = load_signing_key(path)
	assert key.algorithm is SignatureAlgorithm.ED25519
	assert key.identity == SigningKey.from_ed25519_seed(seed).identity


def test_load_pem_keys(tmp_path: Path) -> None:
	p256 = ec.generate_private_key(ec.SECP256R1())
	path = tmp_path / "p256.pem"
	path.write_bytes(
		p256.private_bytes(
			encoding=serialization.Encoding.PEM,
			format=serialization.PrivateFormat.PKCS8,
			encryption_algorithm=serialization.NoEncryption(),
		)
	)
	key = load_signing_key(path)
	assert key.algorithm is SignatureAlgorithm.ECDSA_P256_SHA256
	assert len(key.identity) == 33

	enc = tmp_path / "ed.pem"
	enc.write_bytes(
		Ed25519PrivateKey.generate().private_bytes(
			encoding=serialization.Encoding.PEM,
			format=serialization.PrivateFormat.PKCS8,
			encryption_algorithm=serialization.BestAvailableEncryption(b"hunter2"),
		)
	)
	assert load_signing_key(enc, password=b"hunter2").algorithm is SignatureAlgorithm.ED25519
	with pytest.raises(SigningKeyError):
		load_signing_key(enc)


def test_unsupported_curve_is_rejected(tmp_path: Path) -> None:
	path = tmp_path / "p384.pem"
	path.write_bytes(
		ec.generate_private_key(ec.SECP384R1()).private_bytes(
			encoding=serialization.Encoding.PEM,
			format=serialization.PrivateFormat.PKCS8,
			encryption_algorithm=serialization.NoEncryption(),
		)
	)
	with pytest.raises(SigningKeyError) as excinfo:
		load_signing_key(path)
	assert excinfo.value.path == str(path)


@pytest.mark.parametrize("content", [b"", b"   \n", b"not base64!!", base64.b64encode(b"x" * 16)])
def test_malformed_seed_files_are_rejected(tmp_path: Path, content: bytes) -> None:
	path = tmp_path / "key.seed"
	path.write_bytes(content)
	with pytest.raises(SigningKeyError):
		load_signing_key(path)


def test_missing_key_file_is_rejected(tmp_path: Path) -> None:
	with pytest.raises(SigningKeyError):
		load_signing_key(tmp_path / "nope.seed")
