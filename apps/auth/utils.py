import base64
import hashlib
import hmac
import secrets

PBKDF2_ITERATIONS = 240_000

def _b64e(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).decode("ascii").rstrip("=")

def _b64d(s: str) -> bytes:
    pad = "=" * ((4 - (len(s) % 4)) % 4)
    return base64.urlsafe_b64decode((s or "") + pad)

def _pbkdf2_hash(password: str, salt: bytes, *, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", (password or "").encode("utf-8"), salt, int(iterations))

def hash_password(password: str, *, iterations: int = PBKDF2_ITERATIONS) -> str:
    """Stored as ``pbkdf2_sha256$<iterations>$<salt>$<digest>``."""
    salt = secrets.token_bytes(16)
    digest = _pbkdf2_hash(password, salt, iterations=iterations)
    return f"pbkdf2_sha256${iterations}${_b64e(salt)}${_b64e(digest)}"

def verify_password(password: str, stored: str) -> bool:
    try:
        scheme, iterations, salt, digest = (stored or "").split("$")
    except ValueError:
        return False
    if scheme != "pbkdf2_sha256":
        return False
    candidate = _pbkdf2_hash(password, _b64d(salt), iterations=int(iterations))
    return hmac.compare_digest(candidate, _b64d(digest))
