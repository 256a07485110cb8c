from functools import lru_cache

from cryptography.fernet import Fernet

from ticketshare.core.config import settings


@lru_cache(maxsize=1)
def _fernet() -> Fernet:
    return Fernet(settings.credentials_encryption_key.get_secret_value().encode("utf-8"))


def encrypt_text(plain: str) -> str:
    token = _fernet().encrypt(plain.encode("utf-8"))
    return token.decode("utf-8")


def decrypt_text(token: str) -> str:
    return _fernet().decrypt(token.encode("utf-8")).decode("utf-8")


def mask_url(url: str, keep: int = 40) -> str:
    if len(url) <= keep:
        return url
    return url[:keep] + "..."
