import base64
import hashlib
import hmac
import secrets
from dataclasses import dataclass

from kilofly.core.config import settings

TOKEN_SCHEME = "kf"
PREFIX_LEN = 8


@dataclass(frozen=True)
class AccessTokenParts:
    prefix: str
    plain: str
    hashed: str


def generate_access_token(prefix_len: int = PREFIX_LEN) -> AccessTokenParts:
    # kf_<prefix>_<random>; only the hash is stored
    raw = secrets.token_urlsafe(32)
    prefix = raw[:prefix_len]
    plain = f"{TOKEN_SCHEME}_{prefix}_{raw}"
    return AccessTokenParts(prefix=prefix, plain=plain, hashed=hash_access_token(plain))


def token_prefix(plain: str, prefix_len: int = PREFIX_LEN) -> str | None:
    # prefix may itself contain "_"
    head = f"{TOKEN_SCHEME}_"
    if not plain.startswith(head):
        return None
    rest = plain[len(head):]
    if len(rest) <= prefix_len or rest[prefix_len] != "_":
        return None
    return rest[:prefix_len]


def hash_access_token(plain: str) -> str:
    salted = (plain + settings.token_pepper.get_secret_value()).encode("utf-8")
    digest = hashlib.sha256(salted).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_access_token(plain: str, hashed: str) -> bool:
    return hmac.compare_digest(hash_access_token(plain), hashed)
