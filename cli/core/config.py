import os
from pathlib import Path

DEPLOYHUB_HOME = Path(os.environ.get("DEPLOYHUB_HOME", str(Path.home() / ".deployhub")))
DB_PATH = DEPLOYHUB_HOME / "deployhub.db"
BUILDS_DIR = DEPLOYHUB_HOME / "builds"
MASTER_KEY_PATH = DEPLOYHUB_HOME / "master.key"

PORT_MIN = int(os.environ.get("DEPLOYHUB_PORT_MIN", "4000"))
PORT_MAX = int(os.environ.get("DEPLOYHUB_PORT_MAX", "5000"))

# Seconds to wait for a freshly started container to answer HTTP.
PROBE_TIMEOUT = float(os.environ.get("DEPLOYHUB_PROBE_TIMEOUT", "30"))
PROBE_INTERVAL = 1.0

PUBLIC_HOST = os.environ.get("DEPLOYHUB_PUBLIC_HOST", "localhost")


def ensure_config_dir() -> Path:
    """Create all deployhub config directories if they don't exist."""
    for d in (DEPLOYHUB_HOME, BUILDS_DIR):
        d.mkdir(parents=True, exist_ok=True)
    return DEPLOYHUB_HOME


def get_db_url() -> str:
    """Return the SQLite connection URL."""
    return f"sqlite:///{DB_PATH}"
