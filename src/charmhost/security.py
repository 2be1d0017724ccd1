"""Key, password and opaque identifier primitives."""

import asyncio
import hashlib
import secrets
import time

import bcrypt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from .errors import InvalidArgumentError

# bcrypt only considers the first 72 bytes of a secret
BCRYPT_MAX_PASSWORD_BYTES = 72


def generate_rsa_keypair() -> tuple[str, str]:
    """Generate RSA key pair for HTTP signatures.

    Returns:
        Tuple of (public_key_pem, private_key_pem)
    """
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
    )

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()

    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()

    return public_pem, private_pem


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password with bcrypt.

    Raises:
        InvalidArgumentError: If the password is empty or too long for bcrypt
    """
    secret = password.encode()
    if not secret:
        raise InvalidArgumentError("Password must not be empty.")
    if len(secret) > BCRYPT_MAX_PASSWORD_BYTES:
        raise InvalidArgumentError(
            f"Password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes."
        )
    return bcrypt.hashpw(secret, bcrypt.gensalt(rounds=rounds)).decode()


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored bcrypt hash."""
    secret = password.encode()
    if not secret or len(secret) > BCRYPT_MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(secret, password_hash.encode())
    except ValueError:
        # Malformed stored hash
        return False


def derive_opaque_value(*parts: str) -> str:
    """Derive a unique opaque value from (timestamp, *parts, random nonce).

    Returns:
        Hex-encoded SHA-256 digest
    """
    material = ":".join([str(time.time_ns()), *parts, secrets.token_hex(16)])
    return hashlib.sha256(material.encode()).hexdigest()


async def hash_password_async(password: str, rounds: int = 12) -> str:
    """hash_password run on a worker thread, off the event loop."""
    return await asyncio.to_thread(hash_password, password, rounds)


async def verify_password_async(password: str, password_hash: str) -> bool:
    """verify_password run on a worker thread, off the event loop."""
    return await asyncio.to_thread(verify_password, password, password_hash)
