"""Password hashing shared by the local backends."""

import hashlib
import hmac
import secrets

SCHEME = "scrypt"
# 16 MiB of memory per hash
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1


def _scrypt(password: str, salt: bytes, n: int, r: int, p: int) -> bytes:
    return hashlib.scrypt(password.encode("utf-8"), salt=salt, n=n, r=r, p=p, dklen=32)


def hash_password(password: str, salt: bytes | None = None) -> str:
    """scrypt digest stored as ``scrypt$n$r$p$salt$digest`` (hex)."""
    salt = salt or secrets.token_bytes(16)
    digest = _scrypt(password, salt, SCRYPT_N, SCRYPT_R, SCRYPT_P)
    return f"{SCHEME}${SCRYPT_N}${SCRYPT_R}${SCRYPT_P}${salt.hex()}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    parts = stored.split("$")
    if len(parts) != 6 or parts[0] != SCHEME:
        return False
    try:
        n, r, p = (int(part) for part in parts[1:4])
        salt = bytes.fromhex(parts[4])
        expected = bytes.fromhex(parts[5])
        candidate = _scrypt(password, salt, n, r, p)
    except ValueError:
        return False
    return hmac.compare_digest(candidate, expected)
