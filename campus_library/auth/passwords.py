import hashlib
import hmac
import re

import bcrypt

from campus_library.core import config

# Accounts created before bcrypt stored a bare SHA-256 hex digest.
_LEGACY_DIGEST = re.compile(r'^[0-9a-f]{64}$')


def fits_bcrypt(password: str) -> bool:
    return len(password.encode('utf-8')) <= config.BCRYPT_MAX_PASSWORD_BYTES


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def is_legacy_digest(stored_hash: str) -> bool:
    return bool(_LEGACY_DIGEST.match(stored_hash or ''))


def verify_password(password: str, stored_hash: str | None) -> bool:
    if not stored_hash:
        return False

    if is_legacy_digest(stored_hash):
        digest = hashlib.sha256(password.encode('utf-8')).hexdigest()
        return hmac.compare_digest(digest, stored_hash)

    try:
        return bcrypt.checkpw(password.encode('utf-8'), stored_hash.encode('utf-8'))
    except ValueError:
        return False


def needs_rehash(stored_hash: str | None) -> bool:
    return stored_hash is None or is_legacy_digest(stored_hash)
