"""Application-wide configuration constants."""

import os
import platform
import uuid
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# --- Storage ---
DATA_DIR = Path(os.environ.get("DATA_DIR", Path.home() / ".iot-discovery"))
os.makedirs(DATA_DIR, exist_ok=True)
REGISTRY_FILE = DATA_DIR / "devices.json"

# --- Identity ---
HUB_NAME = os.environ.get("HUB_NAME", platform.node())
# Generate a persistent serial number (stored in a local file)
_SERIAL_FILE = DATA_DIR / ".serial_number"
if "DEVICE_SERIAL" in os.environ:
    DEVICE_SERIAL = os.environ["DEVICE_SERIAL"]
elif _SERIAL_FILE.exists():
    DEVICE_SERIAL = _SERIAL_FILE.read_text().strip()
else:
    DEVICE_SERIAL = str(uuid.uuid4())
    _SERIAL_FILE.write_text(DEVICE_SERIAL)

DEVICE_NAME = os.environ.get("DEVICE_NAME", platform.node())
DEVICE_TYPE = os.environ.get("DEVICE_TYPE", "")
# Optional JSON device info blob; when set the agent announces in freeform style
DEVICE_INFO_FILE = os.environ.get("DEVICE_INFO_FILE", "")

# --- Networking ---
API_HOST = os.environ.get("API_HOST", "0.0.0.0")
API_PORT = _env_int("API_PORT", 8765)
DISCOVERY_PORT = _env_int("DISCOVERY_PORT", 41234)  # UDP, requests and responses
CONTROL_PORT = _env_int("CONTROL_PORT", 9000)  # TCP, agent accept listener

# --- Discovery timing ---
REQUEST_INTERVAL = _env_int("REQUEST_INTERVAL", 60)  # seconds
RESPONSE_INTERVAL = _env_int("RESPONSE_INTERVAL", 2)  # seconds
RESPONSE_LIMIT = _env_int("RESPONSE_LIMIT", 10)  # responses per window
RESPONSE_WINDOW = _env_int("RESPONSE_WINDOW", 20)  # seconds per window
STOP_SIGNAL_TIMEOUT = _env_int("STOP_SIGNAL_TIMEOUT", 5)  # seconds
POLL_INTERVAL = _env_int("POLL_INTERVAL", 30)  # seconds, 0 disables polling
SILENCE_KNOWN_PEERS = _env_bool("SILENCE_KNOWN_PEERS", True)

# --- Agent HTTP surface ---
SILENCE_PATH = "/api/discovery/silence"

# --- Logging ---
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
