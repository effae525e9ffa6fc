"""
Identity handling. The core only needs a stable user id; hosted identity
providers supply one directly, while the local-secret path derives it from
a passphrase.
"""

import hashlib
from dataclasses import dataclass
from typing import Optional

from ..utils.config import config

LOCAL_VAULT_EMAIL = 'private@vault.local'
LOCAL_VAULT_DISPLAY_NAME = 'Legacy Keeper'
_HASH_LENGTH = 28


@dataclass(frozen=True)
class Identity:
    user_id: str
    display_name: Optional[str] = None
    email: Optional[str] = None


def is_local_vault(user_id: str) -> bool:
    """Local-vault ids are never mirrored remotely."""
    return user_id.startswith(config.identity.local_vault_prefix)


def local_vault_user_id(secret_phrase: str) -> str:
    """Deterministic, namespaced user id for a secret phrase.

    The phrase is trimmed and lower-cased so that the same phrase typed
    with different casing opens the same vault.
    """
    normalized = secret_phrase.strip().lower()
    if not normalized:
        raise ValueError('Secret phrase is required')
    digest = hashlib.pbkdf2_hmac('sha256', normalized.encode('utf-8'), config.identity.passcode_salt.encode('utf-8'),
                                 config.identity.passcode_iterations)
    return f'{config.identity.local_vault_prefix}{digest.hex()[:_HASH_LENGTH]}'


def local_vault_identity(secret_phrase: str, kind: str = 'passcode') -> Identity:
    """Identity for the local-secret login path.

    Args:
        secret_phrase: User-chosen passphrase, or an email address when kind is 'email'
        kind: 'passcode' or 'email'
    """
    email = secret_phrase.strip().lower() if kind == 'email' else LOCAL_VAULT_EMAIL
    return Identity(user_id=local_vault_user_id(secret_phrase), display_name=LOCAL_VAULT_DISPLAY_NAME, email=email)
