"""
SSH key generation with ``cryptography``.

Produces OpenSSH-format keypairs in-process: no ssh-keygen, no temp
files holding private material.
"""

from __future__ import annotations

import logging

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, rsa

from hostconverge.adapters.base import KeyGenerator, KeyPair

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ("rsa", "ed25519")


class CryptographyKeyGenerator(KeyGenerator):
    @property
    def name(self) -> str:
        return "keygen"

    def is_available(self) -> bool:
        return True  # pure library, nothing to probe

    def generate_keypair(self, algorithm: str = "rsa", comment: str = "", bits: int = 4096) -> KeyPair:
        if algorithm == "rsa":
            if bits < 2048:
                raise ValueError("RSA keys must be at least 2048 bits")
            key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
        elif algorithm == "ed25519":
            key = ed25519.Ed25519PrivateKey.generate()
        else:
            raise ValueError(
                f"Unsupported key algorithm '{algorithm}'. Valid: {', '.join(SUPPORTED_ALGORITHMS)}"
            )

        private_pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.OpenSSH,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode()
        public = key.public_key().public_bytes(
            encoding=serialization.Encoding.OpenSSH,
            format=serialization.PublicFormat.OpenSSH,
        ).decode()
        if comment:
            public = f"{public} {comment}"

        logger.info("Generated %s keypair%s", algorithm, f" ({comment})" if comment else "")
        return KeyPair(private_key=private_pem, public_key=public + "\n")
