"""
RSA signing keys. One active key signs new tokens; retired keys stay published until their grace
period lapses so tokens they signed still verify. Key material is loaded from PEM files or generated.
"""
import base64
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, generate_private_key

logger = logging.getLogger(__name__)

_KEY_BITS = 2048
ALGORITHM = "RS256"

STATUS_ACTIVE = "active"
STATUS_RETIRED = "retired"


def _generate_key() -> RSAPrivateKey:
    return generate_private_key(public_exponent=65537, key_size=_KEY_BITS)


def _serialize_private(key: RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _deserialize_private(pem: bytes) -> RSAPrivateKey:
    return serialization.load_pem_private_key(pem, password=None)


def _b64url_uint(value: int) -> str:
    raw = value.to_bytes((value.bit_length() + 7) // 8, "big")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def compute_kid(key: RSAPrivateKey) -> str:
    """RFC 7638 thumbprint of the public key, so a key file always gets the same kid."""
    numbers = key.public_key().public_numbers()
    canonical = '{"e":"%s","kty":"RSA","n":"%s"}' % (_b64url_uint(numbers.e), _b64url_uint(numbers.n))
    digest = hashes.Hash(hashes.SHA256())
    digest.update(canonical.encode("ascii"))
    return base64.urlsafe_b64encode(digest.finalize()).rstrip(b"=").decode("ascii")


@dataclass
class SigningKey:
    kid: str
    private_key: RSAPrivateKey
    algorithm: str = ALGORITHM
    status: str = STATUS_ACTIVE
    retired_at: datetime | None = None

    @property
    def public_key(self):
        return self.private_key.public_key()

    def to_jwk(self) -> dict:
        numbers = self.public_key.public_numbers()
        return {
            "kty": "RSA",
            "kid": self.kid,
            "alg": self.algorithm,
            "use": "sig",
            "n": _b64url_uint(numbers.n),
            "e": _b64url_uint(numbers.e),
        }


def load_or_create_private_key(path: str | None) -> RSAPrivateKey:
    """Load RSA private key from path, or generate one (and save it when a path is given)."""
    if not path:
        return _generate_key()
    p = Path(path)
    if p.exists():
        try:
            return _deserialize_private(p.read_bytes())
        except (ValueError, TypeError) as e:
            logger.warning("Failed to load signing key from %s: %s; generating new key", path, e)
    key = _generate_key()
    try:
        p.write_bytes(_serialize_private(key))
        logger.info("Generated and saved signing key to %s", path)
    except OSError as e:
        logger.warning("Could not save signing key to %s: %s", path, e)
    return key


class KeyRing:
    """Published signing keys. Exactly one is active at any time."""

    def __init__(self, active: SigningKey, grace_seconds: int = 86400):
        self.grace_seconds = grace_seconds
        self._lock = threading.Lock()
        self._keys: dict[str, SigningKey] = {active.kid: active}
        self._active_kid = active.kid

    @classmethod
    def from_files(cls, path: str | None, previous_path: str | None = None, grace_seconds: int = 86400) -> "KeyRing":
        key = load_or_create_private_key(path)
        ring = cls(SigningKey(kid=compute_kid(key), private_key=key), grace_seconds=grace_seconds)
        if previous_path:
            p = Path(previous_path)
            if p.exists():
                try:
                    prev = _deserialize_private(p.read_bytes())
                except (ValueError, TypeError) as e:
                    logger.warning("Failed to load previous signing key from %s: %s", previous_path, e)
                else:
                    # A configured previous key stays published until the process restarts without it
                    ring.add_retired(SigningKey(kid=compute_kid(prev), private_key=prev, status=STATUS_RETIRED))
                    logger.info("Loaded previous signing key for rotation")
        return ring

    @classmethod
    def generate(cls, grace_seconds: int = 86400) -> "KeyRing":
        key = _generate_key()
        return cls(SigningKey(kid=compute_kid(key), private_key=key), grace_seconds=grace_seconds)

    @property
    def active(self) -> SigningKey:
        with self._lock:
            return self._keys[self._active_kid]

    def add_retired(self, key: SigningKey) -> None:
        """Publish a key for verification only. retired_at None = no grace expiry."""
        key.status = STATUS_RETIRED
        with self._lock:
            if key.kid != self._active_kid:
                self._keys[key.kid] = key

    def rotate(self, new_key: RSAPrivateKey | None = None) -> SigningKey:
        """Make a new key active; the old one is retired and published for the grace period."""
        new_key = new_key or _generate_key()
        signing_key = SigningKey(kid=compute_kid(new_key), private_key=new_key)
        with self._lock:
            if signing_key.kid in self._keys:
                # Same key material re-added; keep kids unique
                signing_key.kid = f"{signing_key.kid}-{uuid.uuid4().hex[:8]}"
            old = self._keys[self._active_kid]
            old.status = STATUS_RETIRED
            old.retired_at = datetime.now(timezone.utc)
            self._keys[signing_key.kid] = signing_key
            self._active_kid = signing_key.kid
        logger.info("Rotated signing key: active kid=%s, retired kid=%s", signing_key.kid, old.kid)
        return signing_key

    def published(self) -> list[SigningKey]:
        """Active key first, then retired keys still inside their grace period. Drops lapsed keys."""
        now = datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=self.grace_seconds)
        with self._lock:
            lapsed = [
                kid
                for kid, key in self._keys.items()
                if key.status == STATUS_RETIRED and key.retired_at is not None and key.retired_at <= cutoff
            ]
            for kid in lapsed:
                del self._keys[kid]
                logger.info("Signing key kid=%s left its grace period; no longer published", kid)
            active = self._keys[self._active_kid]
            return [active] + [k for k in self._keys.values() if k.kid != active.kid]

    def get(self, kid: str) -> SigningKey | None:
        """Published key by kid, or None."""
        for key in self.published():
            if key.kid == kid:
                return key
        return None

    def jwks(self) -> dict:
        return {"keys": [key.to_jwk() for key in self.published()]}
