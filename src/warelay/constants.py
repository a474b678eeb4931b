"""Compile-time constants for the warelay package.

These are values baked into code that change only on code updates,
NOT between environments. For runtime settings, see config.py.
"""

# ──────────────────────────────────────────────────────────────────────
# Token exchange (service account → OAuth2 access token)
# ──────────────────────────────────────────────────────────────────────
TOKEN_URI = "https://oauth2.googleapis.com/token"
TOKEN_SCOPE = "https://www.googleapis.com/auth/datastore"
TOKEN_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"
TOKEN_LIFETIME_SECONDS = 3600
TOKEN_SIGNING_ALGORITHM = "RS256"

# ──────────────────────────────────────────────────────────────────────
# Media hosting (Cloudinary folders)
# ──────────────────────────────────────────────────────────────────────
QR_FOLDER = "whatsapp_qrcodes"
QR_PUBLIC_ID_PREFIX = "qr_"
INBOX_FOLDER = "wa-inbox-images"
FALLBACK_MIMETYPE = "application/octet-stream"

# ──────────────────────────────────────────────────────────────────────
# HTTP
# ──────────────────────────────────────────────────────────────────────
DEFAULT_HTTP_TIMEOUT = 30.0
DEFAULT_USER_AGENT = "warelay/0.1"

# ──────────────────────────────────────────────────────────────────────
# Session bridge
# ──────────────────────────────────────────────────────────────────────
DEFAULT_BRIDGE_URL = "ws://localhost:3001"
DEFAULT_BRIDGE_TIMEOUT = 60.0
DEFAULT_SESSION_LABEL = "client1"

# ──────────────────────────────────────────────────────────────────────
# Server
# ──────────────────────────────────────────────────────────────────────
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
LIVENESS_TEXT = "WhatsApp relay is running!"
DEFAULT_LOG_LEVEL = "INFO"

# ──────────────────────────────────────────────────────────────────────
# Config
# ──────────────────────────────────────────────────────────────────────
CONFIG_FILENAME = "configs/config.json"
