# Ensures `from medportal...` works when the package lives under `backend/medportal`
import sys, os
from pathlib import Path
ROOT = Path(__file__).resolve().parent
PKG_DIR = ROOT / "backend"
if str(PKG_DIR) not in sys.path:
    sys.path.insert(0, str(PKG_DIR))

# Default to test env before settings are imported
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("SKIP_STARTUP_MIGRATIONS", "1")
os.environ.setdefault("ROLE_RESOLVE_RETRY_SECONDS", "0")
