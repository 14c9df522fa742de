"""Experience Remote configuration.

All settings can be overridden via environment variables.
Configuration is loaded from ~/.experience-remote/experience-remote.env.
"""

import logging
import os
import re
from pathlib import Path

from dotenv import load_dotenv

DATA_DIR = Path(os.environ.get("EXPERIENCE_REMOTE_HOME", Path.home() / ".experience-remote"))
LOG_DIR = DATA_DIR / "logs"
ENV_PATH = DATA_DIR / "experience-remote.env"

load_dotenv(ENV_PATH)

# --- Relay server ---
RELAY_HOST = os.environ.get("RELAY_HOST", "0.0.0.0")
RELAY_PORT = int(os.environ.get("RELAY_PORT", "3001"))

# --- Pairing URLs ---
WEB_REMOTE_URL = os.environ.get("WEB_REMOTE_URL", "https://experience-remote.vercel.app")
# Server URL the phone assumes when the pairing URL does not name one
DEFAULT_RELAY_URL = os.environ.get("DEFAULT_RELAY_URL", "http://localhost:3001")

# --- Transport selection ---
HOSTED_RELAY_URL = os.environ.get("HOSTED_RELAY_URL", "")
TUNNEL_ENABLED = os.environ.get("TUNNEL_ENABLED", "1") not in ("0", "false", "no", "")
TUNNEL_CMD = os.environ.get("TUNNEL_CMD", "lt --port {port}")
TUNNEL_MAX_ATTEMPTS = int(os.environ.get("TUNNEL_MAX_ATTEMPTS", "5"))
TUNNEL_RETRY_DELAY_S = float(os.environ.get("TUNNEL_RETRY_DELAY_S", "5.0"))
TUNNEL_STARTUP_TIMEOUT_S = float(os.environ.get("TUNNEL_STARTUP_TIMEOUT_S", "20.0"))
# Public URL printed by the tunnel command (localtunnel, cloudflared quick tunnels, ngrok)
TUNNEL_URL_PATTERN = os.environ.get(
    "TUNNEL_URL_PATTERN",
    r"https://[a-z0-9-]+\.(?:loca\.lt|trycloudflare\.com|ngrok-free\.app|ngrok\.io|lhr\.life)",
)

# --- Rooms ---
ROOM_TTL_S = int(os.environ.get("ROOM_TTL_S", "300"))  # 5 minutes until joined
ROOM_JOINED_TTL_S = int(os.environ.get("ROOM_JOINED_TTL_S", "600"))  # 10 minutes once joined
ROOM_SWEEP_INTERVAL_S = int(os.environ.get("ROOM_SWEEP_INTERVAL_S", "60"))

# --- Client ---
CONNECT_TIMEOUT_S = float(os.environ.get("CONNECT_TIMEOUT_S", "10.0"))
# Desktop re-attaching to its relay after the link drops
RELAY_REATTACH_ATTEMPTS = int(os.environ.get("RELAY_REATTACH_ATTEMPTS", "5"))
RELAY_REATTACH_DELAY_S = float(os.environ.get("RELAY_REATTACH_DELAY_S", "2.0"))

# --- OSC trigger sink ---
OSC_HOST = os.environ.get("OSC_HOST", "127.0.0.1")
OSC_PORT = int(os.environ.get("OSC_PORT", "9000"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# --- Mutable runtime settings (can be updated from the desktop) ---
_runtime_settings = {
    "osc_host": OSC_HOST,
    "osc_port": OSC_PORT,
}

_ENV_MAPPING = {
    "osc_host": "OSC_HOST",
    "osc_port": "OSC_PORT",
}


def get_setting(key: str):
    return _runtime_settings.get(key)


def update_setting(key: str, value):
    _runtime_settings[key] = value


def persist_settings(env_path: Path = ENV_PATH) -> bool:
    """Write current runtime settings back to the env file.

    Returns False if the file could not be written.
    """
    try:
        content = env_path.read_text() if env_path.exists() else ""
        for key, env_var in _ENV_MAPPING.items():
            value = str(_runtime_settings[key])
            pattern = rf'^{re.escape(env_var)}=.*$'
            if re.search(pattern, content, re.MULTILINE):
                content = re.sub(pattern, f'{env_var}={value}', content, flags=re.MULTILINE)
            else:
                content = content.rstrip() + f'\n{env_var}={value}\n'
        env_path.parent.mkdir(parents=True, exist_ok=True)
        env_path.write_text(content.lstrip("\n"))
        return True
    except OSError as e:
        logging.getLogger("config").error(f"Failed to persist settings: {e}")
        return False
