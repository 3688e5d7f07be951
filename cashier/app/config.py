import os
from typing import List


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def _env_int(self, name: str, default: int) -> int:
        raw = (os.getenv(name) or "").strip()
        if not raw:
            return default
        try:
            return int(raw)
        except Exception:
            return default

    def _env_float(self, name: str, default: float) -> float:
        raw = (os.getenv(name) or "").strip()
        if not raw:
            return default
        try:
            return float(raw)
        except Exception:
            return default

    def __init__(self) -> None:
        self.env = os.getenv("APP_ENV", "local")
        self.api_version = os.getenv("APP_VERSION", "1.2.0").strip() or "1.2.0"
        # Central store directory (orders.json + orders.backup.json).
        self.data_dir = (os.getenv("CASHIER_DATA_DIR") or "").strip() or os.path.join(os.getcwd(), "data")
        # Device-side key/value database.
        self.local_db_path = (os.getenv("CASHIER_LOCAL_DB") or "").strip() or os.path.join(os.getcwd(), "cashier-local.sqlite")
        # When set, devices talk to the central store over HTTP instead of in-process.
        self.remote_url = (os.getenv("CASHIER_REMOTE_URL") or "").strip().rstrip("/")
        self.sync_key = (os.getenv("CASHIER_SYNC_KEY") or "").strip()
        sync_minutes = self._env_int("CASHIER_SYNC_INTERVAL_MINUTES", 5)
        self.sync_interval_minutes = sync_minutes if sync_minutes > 0 else 5
        http_timeout = self._env_float("CASHIER_HTTP_TIMEOUT_S", 10.0)
        self.http_timeout_s = http_timeout if http_timeout > 0 else 10.0
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )


settings = Settings()
