import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    storage_backend: str
    storage_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    site_url: str
    webhook_secret: str
    access_token_ttl_minutes: int

    mail_backend: str
    smtp_server: str
    smtp_port: int
    smtp_use_tls: bool
    smtp_username: str
    smtp_password: str
    email_from: str

    identity_lookup_max_pages: int
    identity_lookup_page_size: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///crm.db"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_root=_getenv("STORAGE_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        site_url=_getenv("SITE_URL", "http://localhost:8080"),
        webhook_secret=_getenv("WEBHOOK_SECRET", ""),
        access_token_ttl_minutes=_getenv_int("ACCESS_TOKEN_TTL_MINUTES", 480),
        mail_backend=_getenv("MAIL_BACKEND", "log"),
        smtp_server=_getenv("SMTP_SERVER", ""),
        smtp_port=_getenv_int("SMTP_PORT", 587),
        smtp_use_tls=_getenv_bool("SMTP_USE_TLS", True),
        smtp_username=_getenv("SMTP_USERNAME", ""),
        smtp_password=os.environ.get("SMTP_PASSWORD") or "",
        email_from=_getenv("EMAIL_FROM", ""),
        identity_lookup_max_pages=_getenv_int("IDENTITY_LOOKUP_MAX_PAGES", 10),
        identity_lookup_page_size=_getenv_int("IDENTITY_LOOKUP_PAGE_SIZE", 1000),
    )


def load_config() -> dict:
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "STORAGE_BACKEND": s.storage_backend,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "SITE_URL": s.site_url.rstrip("/"),
        "WEBHOOK_SECRET": s.webhook_secret,
        "ACCESS_TOKEN_TTL_MINUTES": s.access_token_ttl_minutes,
        "MAIL_BACKEND": s.mail_backend,
        "SMTP_SERVER": s.smtp_server,
        "SMTP_PORT": s.smtp_port,
        "SMTP_USE_TLS": s.smtp_use_tls,
        "SMTP_USERNAME": s.smtp_username,
        "SMTP_PASSWORD": s.smtp_password,
        "EMAIL_FROM": s.email_from,
        "IDENTITY_LOOKUP_MAX_PAGES": s.identity_lookup_max_pages,
        "IDENTITY_LOOKUP_PAGE_SIZE": s.identity_lookup_page_size,
        "STORAGE_ROOT": s.storage_root,
        # CSV uploads (10MB)
        "MAX_CONTENT_LENGTH": 10 * 1024 * 1024,
    }
