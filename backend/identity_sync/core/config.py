# identity_sync/core/config.py
import os
from urllib.parse import quote_plus

from dotenv import load_dotenv


def str_to_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def merge_unique(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for v in items:
        if v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


DEFAULT_PUBLIC_PATHS = [
    "/auth",
    "/auth/(.*)",
    "/webhook",
    "/health",
    # API routes authenticate every call with a bearer token instead of the session cookie.
    "/api/(.*)",
    "/favicon.ico",
    "/robots.txt",
    "/sitemap.xml",
    "/static/(.*)",
]


class Settings:
    def __init__(self) -> None:
        self.ENV = os.getenv("ENV", "dev").strip().lower()  # dev | prod
        if self.ENV != "prod":
            # Load .env only for non-prod so prod can't be accidentally influenced by local files.
            load_dotenv()

        # ----------------------------
        # Database
        # ----------------------------
        self.DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
        self.DB_HOST = os.getenv("DB_HOST", "")
        self.DB_PORT = os.getenv("DB_PORT", "5432")
        self.DB_NAME = os.getenv("DB_NAME", "")
        self.DB_APP_USER = os.getenv("DB_APP_USER", "")
        self.DB_APP_PASSWORD = os.getenv("DB_APP_PASSWORD", "")
        self.DB_MIGRATOR_USER = os.getenv("DB_MIGRATOR_USER", "")
        self.DB_MIGRATOR_PASSWORD = os.getenv("DB_MIGRATOR_PASSWORD", "")
        self.DB_SSLMODE = os.getenv("DB_SSLMODE", "require").strip().lower()

        # ----------------------------
        # CORS
        # ----------------------------
        dev_defaults = [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]

        cors_from_env = parse_csv(os.getenv("CORS_ORIGINS"))
        if self.ENV == "prod":
            self.CORS_ORIGINS = merge_unique(cors_from_env)
        else:
            self.CORS_ORIGINS = merge_unique(cors_from_env + dev_defaults)

        # ----------------------------
        # Webhooks (Clerk via Svix)
        # ----------------------------
        self.CLERK_WEBHOOK_SECRET = os.getenv("CLERK_WEBHOOK_SECRET", "")
        # When true, a user.updated for an unknown subject creates the record instead of being skipped.
        self.WEBHOOK_UPSERT_ON_UPDATE = str_to_bool(os.getenv("WEBHOOK_UPSERT_ON_UPDATE"), default=False)

        # ----------------------------
        # Session tokens
        # ----------------------------
        self.CLERK_ISSUER = os.getenv("CLERK_ISSUER", "").strip().rstrip("/")
        self.CLERK_JWKS_URL = os.getenv("CLERK_JWKS_URL", "").strip()
        self.CLERK_JWKS_CACHE_SECONDS = int(os.getenv("CLERK_JWKS_CACHE_SECONDS", "900"))
        self.CLERK_JWT_AUDIENCE = os.getenv("CLERK_JWT_AUDIENCE", "convex").strip()
        self.CLERK_TOKEN_TEMPLATE = os.getenv("CLERK_TOKEN_TEMPLATE", "convex").strip()
        self.CLERK_SECRET_KEY = os.getenv("CLERK_SECRET_KEY", "")
        self.CLERK_API_URL = os.getenv("CLERK_API_URL", "https://api.clerk.com").strip().rstrip("/")

        # ----------------------------
        # Route gate
        # ----------------------------
        self.ROUTE_GATE_PUBLIC_PATHS = parse_csv(os.getenv("ROUTE_GATE_PUBLIC_PATHS")) or list(DEFAULT_PUBLIC_PATHS)
        self.ROUTE_GATE_SESSION_COOKIE = os.getenv("ROUTE_GATE_SESSION_COOKIE", "__clerk_db_jwt").strip()
        self.ROUTE_GATE_SIGN_IN_PATH = os.getenv("ROUTE_GATE_SIGN_IN_PATH", "/auth").strip() or "/auth"

        self._validate_prod()

    def _validate_prod(self) -> None:
        if self.ENV != "prod":
            return

        missing: list[str] = []

        if not self.CLERK_WEBHOOK_SECRET:
            missing.append("CLERK_WEBHOOK_SECRET")
        if not self.CLERK_ISSUER:
            missing.append("CLERK_ISSUER")
        if not self.DATABASE_URL:
            if not self.DB_HOST:
                missing.append("DB_HOST")
            if not self.DB_NAME:
                missing.append("DB_NAME")
            if not self.DB_APP_USER:
                missing.append("DB_APP_USER")
            if not self.DB_APP_PASSWORD:
                missing.append("DB_APP_PASSWORD")
            if self.DB_SSLMODE != "require":
                raise RuntimeError("DB_SSLMODE must be 'require' in prod")

        if not self.CORS_ORIGINS:
            missing.append("CORS_ORIGINS")

        cors_joined = ",".join(self.CORS_ORIGINS)
        if "localhost" in cors_joined or "127.0.0.1" in cors_joined:
            raise RuntimeError("CORS_ORIGINS contains localhost/dev origins in prod")

        if self.CLERK_ISSUER and not self.CLERK_ISSUER.startswith("https://"):
            raise RuntimeError("CLERK_ISSUER should be https://... in prod")

        if missing:
            raise RuntimeError(f"Missing required prod env vars: {', '.join(missing)}")

    @property
    def is_prod(self) -> bool:
        return self.ENV == "prod"

    @property
    def clerk_jwks_url(self) -> str:
        if self.CLERK_JWKS_URL:
            return self.CLERK_JWKS_URL
        if not self.CLERK_ISSUER:
            return ""
        return f"{self.CLERK_ISSUER}/.well-known/jwks.json"

    def _build_database_url(self, user: str, password: str) -> str:
        encoded_password = quote_plus(password)
        return (
            f"postgresql+psycopg2://{user}:{encoded_password}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            f"?sslmode={self.DB_SSLMODE}"
        )

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        if not self.DB_HOST:
            # Local development without Postgres.
            return "sqlite+pysqlite:///./identity_sync.db"
        return self._build_database_url(self.DB_APP_USER, self.DB_APP_PASSWORD)

    @property
    def migrations_database_url(self) -> str:
        if self.DATABASE_URL or not self.DB_MIGRATOR_USER:
            return self.database_url
        return self._build_database_url(self.DB_MIGRATOR_USER, self.DB_MIGRATOR_PASSWORD)


settings = Settings()
