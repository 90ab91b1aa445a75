"""
Configuration - Single Source of Truth

Defaults for reaching Chrome and bounding conversions. Each can be
overridden via environment variable. Do not duplicate elsewhere.
"""

import os


def _optional_int(name: str) -> int | None:
    raw = os.environ.get(name, "").strip()
    return int(raw) if raw else None


def _domain_list(name: str) -> tuple[str, ...]:
    raw = os.environ.get(name, "")
    return tuple(d.strip().lower() for d in raw.split(",") if d.strip())


# Chrome DevTools HTTP endpoint (chrome --remote-debugging-port=9222)
CDP_HOST = os.environ.get("PRESSE_CDP_HOST", "127.0.0.1")
CDP_PORT = int(os.environ.get("PRESSE_CDP_PORT", 9222))

# Discovery requests against /json/* (seconds)
DISCOVERY_TIMEOUT = 5

# WebSocket handshake bound
CONNECT_TIMEOUT_MS = int(os.environ.get("PRESSE_CONNECT_TIMEOUT_MS", 30000))

# Wait for DOMContentLoaded after navigation / content injection
LOAD_TIMEOUT_MS = int(os.environ.get("PRESSE_LOAD_TIMEOUT_MS", 30000))

# Page.printToPDF bound. Unset means wait as long as Chrome takes.
PRINT_TIMEOUT_MS = _optional_int("PRESSE_PRINT_TIMEOUT_MS")

# URL policy for url_to_pdf and base_url. Comma-separated domain lists;
# a non-empty allow list also lifts the internal-address block.
ALLOW_PRIVATE_HOSTS = os.environ.get("PRESSE_ALLOW_PRIVATE_HOSTS", "").lower() in ("1", "true", "yes")
ALLOWED_DOMAINS = _domain_list("PRESSE_ALLOWED_DOMAINS")
BLOCKED_DOMAINS = _domain_list("PRESSE_BLOCKED_DOMAINS")

LOG_LEVEL = os.environ.get("PRESSE_LOG_LEVEL", "INFO")

# Deposit root, created under the caller's base path
OUTPUT_DIR_NAME = os.environ.get("PRESSE_OUTPUT_DIR", "presse-out")
