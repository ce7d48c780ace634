# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from simpack.crypto import b64_encode
from simpack.keys import SignatureAlgorithm, SigningKey


@dataclass(frozen=True)
class KeygenOptions:
	out_path: Path
	algorithm: SignatureAlgorithm = SignatureAlgorithm.ED25519
	print_identity: bool = False
	print_kid: bool = False
	force: bool = False


def keygen_v0(opts: KeygenOptions) -> SigningKey:
	"""
	Generate a new private signing key file.

	Formats (pinned):
	- ed25519: base64 of the raw 32-byte private seed, followed by a newline;
	- ecdsa-p256-sha256: unencrypted PKCS#8 PEM.
	"""
	if opts.out_path.exists() and not opts.force:
		raise ValueError(f"refusing to overwrite existing key file: {opts.out_path}")
	opts.out_path.parent.mkdir(parents=True, exist_ok=True)

	if opts.algorithm is SignatureAlgorithm.ED25519:
		seed32 = os.urandom(32)
		data = (b64_encode(seed32) + "\n").encode("ascii")
		key = SigningKey.from_ed25519_seed(seed32)
	else:
		priv = ec.generate_private_key(ec.SECP256R1())
		data = priv.private_bytes(
			encoding=serialization.Encoding.PEM,
			format=serialization.PrivateFormat.PKCS8,
			encryption_algorithm=serialization.NoEncryption(),
		)
		key = SigningKey.from_private_key(priv)

	fd = os.open(str(opts.out_path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
	with os.fdopen(fd, "wb") as f:
		f.write(data)

	if opts.print_identity:
		print(b64_encode(key.identity))
	if opts.print_kid:
		print(key.kid)
	return key
