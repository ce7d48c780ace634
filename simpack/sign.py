# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Artifact signing and verification.

Pinned scheme:
- digest = SHA-256(artifact_bytes || descriptor_canonical_bytes(descriptor));
- the 32-byte digest is what gets signed;
- the signature block embeds the signer's public identity so an installer can
  verify without out-of-band lookups, and may additionally pin the identity
  against its own trusted set.

Ed25519 signatures are deterministic; ECDSA signatures are randomized. The
digest is deterministic for both.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from simpack.crypto import b64_decode, b64_encode, compute_kid, sha256_bytes
from simpack.descriptor import PackageDescriptor, descriptor_canonical_bytes, validate_descriptor
from simpack.errors import IntegrityError, SigningKeyError, ValidationError
from simpack.keys import SignatureAlgorithm, SigningKey, verify_signature

if TYPE_CHECKING:
	from simpack.archive_v1 import PackageArchive

logger = logging.getLogger(__name__)

DIGEST_SIZE = 32


@dataclass(frozen=True)
class SignatureBlock:
	algorithm: SignatureAlgorithm
	digest: bytes
	signature: bytes
	signer_identity: bytes

	@property
	def kid(self) -> str:
		return compute_kid(self.algorithm.value, self.signer_identity)


def compute_digest(artifact_bytes: bytes, descriptor: PackageDescriptor) -> bytes:
	return sha256_bytes(bytes(artifact_bytes) + descriptor_canonical_bytes(descriptor))


def sign(artifact_bytes: bytes, descriptor: PackageDescriptor, signing_key: SigningKey | None) -> SignatureBlock:
	"""
	Sign an artifact together with its descriptor.

	Raises SigningKeyError for absent/unusable keys and IntegrityError for empty
	artifacts or descriptors that fail re-validation.
	"""
	if signing_key is None:
		raise SigningKeyError(message="no signing key supplied")
	if not isinstance(signing_key, SigningKey):
		raise SigningKeyError(message=f"unsupported signing key handle {type(signing_key).__name__}")
	if not artifact_bytes:
		raise IntegrityError(message="artifact is empty")
	try:
		checked = validate_descriptor(descriptor)
	except ValidationError as err:
		raise IntegrityError(message=f"descriptor failed re-validation: {err.message}", field=err.field) from err

	digest = compute_digest(artifact_bytes, checked)
	sig = signing_key.sign(digest)
	block = SignatureBlock(
		algorithm=signing_key.algorithm,
		digest=digest,
		signature=sig,
		signer_identity=signing_key.identity,
	)
	logger.debug("signed %s %s digest=%s kid=%s", checked.name, checked.version, digest.hex(), block.kid)
	return block


def verify_block(
	artifact_bytes: bytes,
	descriptor: PackageDescriptor,
	block: SignatureBlock,
	*,
	trusted_identities: Iterable[bytes] | None = None,
) -> bool:
	if not artifact_bytes or len(block.digest) != DIGEST_SIZE:
		return False
	try:
		expected = compute_digest(artifact_bytes, descriptor)
	except (AttributeError, ValueError):
		return False
	if not hmac.compare_digest(expected, block.digest):
		return False
	if trusted_identities is not None and block.signer_identity not in set(trusted_identities):
		return False
	return verify_signature(block.algorithm, block.signer_identity, block.digest, block.signature)


def verify(archive: "PackageArchive", *, trusted_identities: Iterable[bytes] | None = None) -> bool:
	"""
	Installer-side check: recompute the digest from the archive's artifact and
	descriptor and verify the signature against the embedded identity.
	Any mismatch means the package is untrusted.
	"""
	ok = verify_block(
		archive.artifact,
		archive.descriptor,
		archive.signature,
		trusted_identities=trusted_identities,
	)
	if not ok:
		logger.warning("signature verification failed for %s %s", archive.descriptor.name, archive.descriptor.version)
	return ok


def signature_block_to_dict(block: SignatureBlock) -> dict[str, Any]:
	return {
		"algorithm": block.algorithm.value,
		"digest": f"sha256:{block.digest.hex()}",
		"signature": b64_encode(block.signature),
		"signer_identity": b64_encode(block.signer_identity),
		"kid": block.kid,
	}


def signature_block_from_dict(obj: Mapping[str, Any]) -> SignatureBlock:
	if not isinstance(obj, Mapping):
		raise IntegrityError(message="signature block must be an object", field="signature")
	try:
		algorithm = SignatureAlgorithm.parse(str(obj.get("algorithm") or ""))
	except ValueError as err:
		raise IntegrityError(message=str(err), field="signature.algorithm") from err
	digest_s = obj.get("digest")
	if not isinstance(digest_s, str) or not digest_s.startswith("sha256:"):
		raise IntegrityError(message="signature digest must be 'sha256:<hex>'", field="signature.digest")
	try:
		digest = bytes.fromhex(digest_s.split("sha256:", 1)[1])
		signature = b64_decode(str(obj.get("signature") or ""))
		identity = b64_decode(str(obj.get("signer_identity") or ""))
	except ValueError as err:
		raise IntegrityError(message=f"malformed signature block: {err}", field="signature") from err
	if len(digest) != DIGEST_SIZE:
		raise IntegrityError(message="signature digest must be 32 bytes", field="signature.digest")
	if not signature or not identity:
		raise IntegrityError(message="signature block is missing signature or signer identity", field="signature")
	block = SignatureBlock(algorithm=algorithm, digest=digest, signature=signature, signer_identity=identity)
	kid = obj.get("kid")
	if kid is not None and kid != block.kid:
		raise IntegrityError(message="signature kid does not match signer identity", field="signature.kid")
	return block
