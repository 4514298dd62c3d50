"""Runtime settings, read from the environment (and an optional .env file)."""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# --- Crypto ---
SCHEME = os.getenv("GROUPCHAT_SCHEME", "rsa")  # "rsa" or "passphrase"
RSA_KEY_SIZE = int(os.getenv("GROUPCHAT_RSA_KEY_SIZE", "2048"))
KDF_ITERATIONS = int(os.getenv("GROUPCHAT_KDF_ITERATIONS", "100000"))
KDF_SALT = os.getenv("GROUPCHAT_KDF_SALT", "StaticSaltForDemo")
KDF_SALT_MODE = os.getenv("GROUPCHAT_KDF_SALT_MODE", "static")  # "static" or "persisted"
CRYPTO_TIMEOUT = float(os.getenv("GROUPCHAT_CRYPTO_TIMEOUT", "10"))

# --- Storage ---
STORE_BACKEND = os.getenv("GROUPCHAT_STORE_BACKEND", "file")  # "file", "mysql" or "memory"
STORE_DIR = os.getenv("GROUPCHAT_STORE_DIR", "chatstore")
RETENTION_CAP = int(os.getenv("GROUPCHAT_RETENTION_CAP", "500"))

# --- Sync ---
POLL_INTERVAL = float(os.getenv("GROUPCHAT_POLL_INTERVAL", "1.0"))

# --- Abuse control ---
RATE_LIMIT = int(os.getenv("GROUPCHAT_RATE_LIMIT", "30"))
RATE_WINDOW_SECONDS = int(os.getenv("GROUPCHAT_RATE_WINDOW", "60"))
BAN_SECONDS = int(os.getenv("GROUPCHAT_BAN_SECONDS", "86400"))
ORIGIN = os.getenv("GROUPCHAT_ORIGIN", "127.0.0.1")

LOG_LEVEL = os.getenv("GROUPCHAT_LOG_LEVEL", "WARNING")

# Field bounds
MAX_AUTHOR_LENGTH = 20
MAX_MESSAGE_LENGTH = 1000
