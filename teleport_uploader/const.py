"""Constants for the Teleport uploader."""

import os
from pathlib import Path

AUTH_ENDPOINT = os.getenv(
    "TELEPORT_AUTH_ENDPOINT", "https://signin.teleport.varjo.com/oauth2/token"
)
API_URL = os.getenv("TELEPORT_API_BASE", "https://teleport.varjo.com/api/v1")
DEFAULT_SCOPE = os.getenv("TELEPORT_OAUTH_SCOPE", "openid profile email")

DEFAULT_CONCURRENCY = 4
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_BASE_SECONDS = 0.5
BACKOFF_MULTIPLIER = 2.0
DEFAULT_TOKEN_EXPIRY_MARGIN_SECONDS = 60

DEFAULT_REQUEST_TIMEOUT_SECONDS = 60
DEFAULT_TRANSFER_TIMEOUT_SECONDS = 300  # 5 minutes per part
DEFAULT_OBSERVER_DRAIN_TIMEOUT_SECONDS = 5.0

SUCCESS_STATUS_CODES = range(200, 300)
ETAG_HEADER = "ETag"

# Uploader configuration paths and files
CONFIG_DIR = Path.home() / ".teleport_uploader"
CONFIG_FILE = "config.yaml"
CONFIG_ENCODING = "utf-8"

# Environment variables consulted by the config loader
ENV_PREFIX = "TELEPORT_"
