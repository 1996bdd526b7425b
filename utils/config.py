# utils/config.py
import os

from dotenv import load_dotenv

STORE_BACKENDS = ("github", "mongo")


def _env_float(name, default):
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}")


def _env_list(name):
    raw = os.getenv(name) or ""
    return [part.strip() for part in raw.split(",") if part.strip()]


class ProxyConfig:
    """
    Settings for one proxy process. Built once at startup and handed to
    create_app; nothing below the handlers reads the environment.
    """

    def __init__(
        self,
        vps_base="http://127.0.0.1:5021",
        callback_secret="",
        admin_key="",
        device_salt="change_me",
        store_backend="github",
        gh_owner="",
        gh_repo="",
        gh_branch="main",
        gh_path="database.json",
        gh_token="",
        mongo_uri="mongodb://localhost:27017/levpay",
        store_timeout=15.0,
        vps_timeout=15.0,
        vps_qr_timeout=20.0,
        telegram_bot_token="",
        admin_chat_ids=None,
        log_level="INFO",
    ):
        if store_backend not in STORE_BACKENDS:
            raise RuntimeError(
                f"STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}, got {store_backend!r}"
            )
        self.vps_base = vps_base.rstrip("/")
        self.callback_secret = callback_secret
        self.admin_key = admin_key
        self.device_salt = device_salt
        self.store_backend = store_backend
        self.gh_owner = gh_owner
        self.gh_repo = gh_repo
        self.gh_branch = gh_branch
        self.gh_path = gh_path
        self.gh_token = gh_token
        self.mongo_uri = mongo_uri
        self.store_timeout = store_timeout
        self.vps_timeout = vps_timeout
        self.vps_qr_timeout = vps_qr_timeout
        self.telegram_bot_token = telegram_bot_token
        self.admin_chat_ids = list(admin_chat_ids or [])
        self.log_level = log_level

    @property
    def store_locator(self):
        if self.store_backend == "github":
            return self.gh_path
        return "promos"

    @classmethod
    def from_env(cls):
        load_dotenv()
        return cls(
            vps_base=os.getenv("VPS_BASE", "http://127.0.0.1:5021"),
            callback_secret=os.getenv("CALLBACK_SECRET", ""),
            admin_key=os.getenv("ADMIN_KEY", ""),
            device_salt=os.getenv("DEVICE_PEPPER", "change_me"),
            store_backend=(os.getenv("STORE_BACKEND") or "github").strip().lower(),
            gh_owner=os.getenv("GH_OWNER", ""),
            gh_repo=os.getenv("GH_REPO", ""),
            gh_branch=os.getenv("GH_BRANCH") or "main",
            gh_path=os.getenv("GH_PATH") or "database.json",
            gh_token=os.getenv("GH_TOKEN", ""),
            mongo_uri=os.getenv("MONGO_URI", "mongodb://localhost:27017/levpay"),
            store_timeout=_env_float("STORE_TIMEOUT", 15.0),
            vps_timeout=_env_float("VPS_TIMEOUT", 15.0),
            vps_qr_timeout=_env_float("VPS_QR_TIMEOUT", 20.0),
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", ""),
            admin_chat_ids=_env_list("ADMIN_CHAT_IDS"),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        )
