# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Signing key handles.

Supported key material:
- a seed file: base64 of a raw 32-byte Ed25519 private seed (whitespace allowed);
- a PKCS#8 PEM private key, Ed25519 or EC P-256 (unencrypted, or encrypted with
  a password supplied by the caller).

The handle is opaque to the rest of the pipeline: it signs bytes and exposes
the public identity verifiers need. Key material is never generated or stored
here (see `keygen.py` for the explicit tool).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from simpack.crypto import b64_decode, compute_kid
from simpack.errors import SigningKeyError


class SignatureAlgorithm(str, enum.Enum):
	ED25519 = "ed25519"
	ECDSA_P256_SHA256 = "ecdsa-p256-sha256"

	@classmethod
	def parse(cls, value: str) -> "SignatureAlgorithm":
		for member in cls:
			if member.value == value:
				return member
		raise ValueError(f"unsupported signature algorithm {value!r}")


_PrivateKey = Union[Ed25519PrivateKey, ec.EllipticCurvePrivateKey]


def ed25519_public_bytes_raw(pubkey: Ed25519PublicKey) -> bytes:
	return pubkey.public_bytes(
		encoding=serialization.Encoding.Raw,
		format=serialization.PublicFormat.Raw,
	)


def p256_public_bytes(pubkey: ec.EllipticCurvePublicKey) -> bytes:
	return pubkey.public_bytes(
		encoding=serialization.Encoding.X962,
		format=serialization.PublicFormat.CompressedPoint,
	)


@dataclass(frozen=True)
class SigningKey:
	algorithm: SignatureAlgorithm
	_private: _PrivateKey

	@classmethod
	def from_ed25519_seed(cls, seed32: bytes) -> "SigningKey":
		if not isinstance(seed32, (bytes, bytearray)) or len(seed32) != 32:
			raise SigningKeyError(message="ed25519 private key seed must be 32 bytes")
		return cls(SignatureAlgorithm.ED25519, Ed25519PrivateKey.from_private_bytes(bytes(seed32)))

	@classmethod
	def from_private_key(cls, key: object) -> "SigningKey":
		if isinstance(key, Ed25519PrivateKey):
			return cls(SignatureAlgorithm.ED25519, key)
		if isinstance(key, ec.EllipticCurvePrivateKey):
			if not isinstance(key.curve, ec.SECP256R1):
				raise SigningKeyError(message=f"unsupported EC curve '{key.curve.name}' (only P-256 is supported)")
			return cls(SignatureAlgorithm.ECDSA_P256_SHA256, key)
		raise SigningKeyError(message=f"unsupported private key type {type(key).__name__}")

	@property
	def identity(self) -> bytes:
		"""Public identity: raw Ed25519 key, or compressed SEC1 point for P-256."""
		pub = self._private.public_key()
		if self.algorithm is SignatureAlgorithm.ED25519:
			return ed25519_public_bytes_raw(pub)
		return p256_public_bytes(pub)

	@property
	def kid(self) -> str:
		return compute_kid(self.algorithm.value, self.identity)

	def sign(self, message: bytes) -> bytes:
		if self.algorithm is SignatureAlgorithm.ED25519:
			return self._private.sign(message)
		return self._private.sign(message, ec.ECDSA(hashes.SHA256()))

	def __repr__(self) -> str:
		return f"SigningKey(algorithm={self.algorithm.value!r}, kid={self.kid!r})"


def verify_signature(algorithm: SignatureAlgorithm, identity: bytes, message: bytes, signature: bytes) -> bool:
	"""
	Verify `signature` over `message` for the public `identity`.

	Returns False on verification failure or unusable identity bytes.
	"""
	try:
		if algorithm is SignatureAlgorithm.ED25519:
			Ed25519PublicKey.from_public_bytes(identity).verify(signature, message)
		else:
			pub = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), identity)
			pub.verify(signature, message, ec.ECDSA(hashes.SHA256()))
	except InvalidSignature:
		return False
	except ValueError:
		return False
	return True


def load_signing_key(path: Path, *, password: bytes | None = None) -> SigningKey:
	"""Load a signing key from a seed file or a PEM private key."""
	if not path.exists():
		raise SigningKeyError(message="signing key file not found", path=str(path))
	data = path.read_bytes()
	if not data.strip():
		raise SigningKeyError(message="signing key file is empty", path=str(path))

	if b"-----BEGIN" in data:
		try:
			key = serialization.load_pem_private_key(data, password=password)
		except (ValueError, TypeError) as err:
			raise SigningKeyError(message=f"invalid PEM private key: {err}", path=str(path)) from err
		try:
			return SigningKey.from_private_key(key)
		except SigningKeyError as err:
			raise SigningKeyError(message=err.message, path=str(path)) from err

	try:
		raw = b64_decode(data.decode("ascii").strip())
	except (ValueError, UnicodeDecodeError) as err:
		raise SigningKeyError(message="invalid base64 in key seed file", path=str(path)) from err
	if len(raw) != 32:
		raise SigningKeyError(message="ed25519 private key seed must decode to 32 bytes", path=str(path))
	return SigningKey.from_ed25519_seed(raw)
