"""
Bokun Credential Service

Loads, saves and masks the vendor's Bokun credentials.

Secrets are stored Fernet-encrypted (AES-128-CBC + HMAC). The Fernet key
is derived from CREDENTIALS_ENCRYPTION_KEY by SHA-256 so any passphrase
works. Rows written before encryption was introduced hold plain text;
those are returned as-is on read and encrypted on the next save.
"""

import base64
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from ..config import settings
from ..exceptions import CredentialDecryptionError, SyncConfigurationError
from ..models.bokun_config import BokunConfig
from ..schemas.sync import BokunConfigResponse, BokunConfigUpdate

logger = logging.getLogger(__name__)

# Every Fernet token starts with version byte 0x80, i.e. "gAAAAA" once base64-encoded
FERNET_TOKEN_PREFIX = "gAAAAA"


def get_fernet(key: Optional[str] = None) -> Fernet:
    passphrase = key or settings.credentials_encryption_key
    if not passphrase:
        raise SyncConfigurationError("CREDENTIALS_ENCRYPTION_KEY not configured")
    derived = base64.urlsafe_b64encode(hashlib.sha256(passphrase.encode()).digest())
    return Fernet(derived)


def encrypt_secret(plaintext: Optional[str], key: Optional[str] = None) -> Optional[str]:
    if not plaintext:
        return plaintext
    return get_fernet(key).encrypt(plaintext.encode()).decode()


def decrypt_secret(value: Optional[str], key: Optional[str] = None) -> Optional[str]:
    """
    Decrypt a stored secret, passing legacy plain text through.

    Raises:
        CredentialDecryptionError: value is a Fernet token that the
            configured key cannot open (key rotated or wrong)
    """
    if not value:
        return value
    try:
        return get_fernet(key).decrypt(value.encode()).decode()
    except InvalidToken:
        if value.startswith(FERNET_TOKEN_PREFIX):
            raise CredentialDecryptionError(
                "Stored Bokun credentials cannot be decrypted with the configured key"
            )
        logger.warning("Bokun credential stored as plain text, it will be encrypted on next save")
        return value


def mask(value: Optional[str], visible: int = 8) -> Optional[str]:
    if not value:
        return None
    return f"{value[:visible]}..." if len(value) > visible else "***"


@dataclass
class BokunCredentials:
    access_key: Optional[str]
    secret_key: Optional[str]
    vendor_id: Optional[str]
    sync_enabled: bool = False

    @property
    def is_complete(self) -> bool:
        return bool(self.access_key and self.secret_key)


def get_config(db: Session) -> Optional[BokunConfig]:
    return db.query(BokunConfig).order_by(BokunConfig.created_at).first()


def load_credentials(db: Session, require_enabled: bool = True) -> BokunCredentials:
    """
    Read and decrypt the stored credentials.

    Raises:
        SyncConfigurationError: nothing stored, sync disabled or keys missing
    """
    config = get_config(db)
    if config is None:
        raise SyncConfigurationError("Bokun is not configured")
    if require_enabled and not config.sync_enabled:
        raise SyncConfigurationError("Bokun sync is disabled")

    credentials = BokunCredentials(
        access_key=decrypt_secret(config.access_key),
        secret_key=decrypt_secret(config.secret_key),
        vendor_id=config.vendor_id,
        sync_enabled=bool(config.sync_enabled),
    )
    if not credentials.is_complete:
        raise SyncConfigurationError("Bokun access key and secret key are required")
    return credentials


def save_config(db: Session, data: BokunConfigUpdate) -> BokunConfig:
    """Create or replace the single credential row, encrypting the secrets"""
    config = get_config(db)
    if config is None:
        config = BokunConfig()
        db.add(config)

    config.access_key = encrypt_secret(data.access_key)
    config.secret_key = encrypt_secret(data.secret_key)
    config.vendor_id = data.vendor_id
    config.sync_enabled = data.sync_enabled

    db.commit()
    db.refresh(config)
    logger.info(f"Bokun configuration saved for vendor {data.vendor_id}")
    return config


def mark_synced(db: Session, when: datetime) -> None:
    """Advance the global last_sync marker"""
    config = get_config(db)
    if config is None:
        return
    config.last_sync = when
    db.commit()


def masked_config(db: Session) -> BokunConfigResponse:
    config = get_config(db)
    if config is None:
        return BokunConfigResponse(configured=False)

    try:
        access_key = decrypt_secret(config.access_key)
    except CredentialDecryptionError:
        access_key = None

    return BokunConfigResponse(
        configured=bool(config.access_key and config.secret_key),
        access_key_preview=mask(access_key),
        vendor_id=config.vendor_id,
        sync_enabled=bool(config.sync_enabled),
        last_sync=config.last_sync,
    )
