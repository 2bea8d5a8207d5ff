"""Project configuration settings.

Constants shared by the crypto engine, the vault session and the CLI.
Paths and log level can be overridden through the environment.
"""

from pathlib import Path
import os

# Security / crypto
DEFAULT_ITERATIONS = 100_000  # PBKDF2 iterations for new vaults
MIN_ITERATIONS = 100_000
KDF_ALGORITHM = "pbkdf2-sha256"
SALT_LENGTH = 16
KEY_LENGTH = 32  # AES-256
NONCE_LENGTH = 12  # GCM 96-bit nonce
AUTH_TAG_LENGTH = 16  # GCM tag length

# Vault
MIN_PASSWORD_LENGTH = 12
DEFAULT_VAULT_DIR = Path(os.environ.get("CIPHERVAULT_DIR", "vault_data"))

# Logical keys in the blob store
SALT_KEY = "vault.salt"
ENTRIES_KEY = "vault.entries"
KDF_KEY = "vault.kdf"

# Limits
MAX_ENTRY_SIZE = 1024 * 1024      # 1MB entry bodies
MAX_TITLE_LENGTH = 200

# Logging
LOG_LEVEL = os.environ.get("CIPHERVAULT_LOG_LEVEL", "INFO")

__all__ = [
	'DEFAULT_ITERATIONS','MIN_ITERATIONS','KDF_ALGORITHM','SALT_LENGTH','KEY_LENGTH','NONCE_LENGTH',
	'AUTH_TAG_LENGTH','MIN_PASSWORD_LENGTH','DEFAULT_VAULT_DIR','SALT_KEY','ENTRIES_KEY','KDF_KEY',
	'MAX_ENTRY_SIZE','MAX_TITLE_LENGTH','LOG_LEVEL'
]
