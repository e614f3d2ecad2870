"""Configuration for the finance API and the billing-cycle engine."""

import os
from dataclasses import dataclass, field
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent

DEFAULT_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


@dataclass
class Settings:
    database_url: str = ""
    sqlite_path: Path = field(default_factory=lambda: BASE_DIR / "data" / "finance.db")
    token_secret: str = "change-me-in-production"
    token_ttl_seconds: int = 43200  # 12h
    cors_origins: list[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    log_level: str = "INFO"
    log_format: str = "standard"
    admin_email: str = "admin@localhost"
    admin_password: str = ""
    admin_name: str = "Admin"
    balance_cas_retries: int = 5

    @property
    def use_postgres(self) -> bool:
        return self.database_url.startswith("postgres://") or self.database_url.startswith("postgresql://")

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables."""
        raw_origins = (os.getenv("CORS_ORIGINS") or "").strip()
        origins = [o.strip() for o in raw_origins.split(",") if o.strip()] if raw_origins else list(DEFAULT_CORS_ORIGINS)
        sqlite_raw = (os.getenv("SQLITE_PATH") or "").strip()

        return cls(
            database_url=os.getenv("DATABASE_URL", "").strip(),
            sqlite_path=Path(sqlite_raw) if sqlite_raw else BASE_DIR / "data" / "finance.db",
            token_secret=os.getenv("API_TOKEN_SECRET", "change-me-in-production"),
            token_ttl_seconds=int(os.getenv("API_TOKEN_TTL_SECONDS", "43200")),
            cors_origins=origins,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "standard"),
            admin_email=os.getenv("ADMIN_BOOTSTRAP_EMAIL", "admin@localhost"),
            admin_password=os.getenv("ADMIN_BOOTSTRAP_PASSWORD", ""),
            admin_name=os.getenv("ADMIN_BOOTSTRAP_NAME", "Admin"),
            balance_cas_retries=max(1, int(os.getenv("BALANCE_CAS_RETRIES", "5"))),
        )


settings = Settings.from_env()
