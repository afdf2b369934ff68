"""
Centralized application configuration – loaded from environment variables.
"""

from __future__ import annotations

from urllib.parse import urlparse

from pydantic_settings import BaseSettings

from samesite_auth.security.cookies import CookieContext


class Settings(BaseSettings):
    """All env-driven configuration in one place."""

    # ── App ───────────────────────────────────────────────────────
    APP_NAME: str = "SameSite Auth Cookies"
    APP_VERSION: str = "0.1.0"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "DEBUG"

    # ── Token storage ─────────────────────────────────────────────
    TOKEN_STORE: str = "memory"  # "memory" | "postgres"
    DATABASE_URL: str = "postgresql+asyncpg://auth:auth_secret@db:5432/auth_db"

    # ── CORS ──────────────────────────────────────────────────────
    CORS_ORIGINS: str = "http://localhost:5173"

    # ── Cookie signing ────────────────────────────────────────────
    # Empty means a random secret per process: every restart logs everyone out.
    AUTH_COOKIE_SECRET: str = ""

    # ── Cookie placement ──────────────────────────────────────────
    HOME_URL: str = "https://localhost"
    COOKIE_DOMAIN: str = ""
    ADMIN_COOKIE_PATH: str = "/admin"
    PLUGINS_COOKIE_PATH: str = "/plugins"
    COOKIEPATH: str = "/"
    SITECOOKIEPATH: str = "/"

    AUTH_COOKIE_NAME: str = "auth_session"
    SECURE_AUTH_COOKIE_NAME: str = "secure_auth_session"
    LOGGED_IN_COOKIE_NAME: str = "logged_in_session"

    # ── Lifetimes ─────────────────────────────────────────────────
    REMEMBER_TTL_DAYS: int = 14
    SESSION_TTL_DAYS: int = 2
    GRACE_PERIOD_HOURS: int = 12

    # ── Helpers ───────────────────────────────────────────────────
    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated origins into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def home_url_scheme(self) -> str:
        return urlparse(self.HOME_URL).scheme.lower()

    def cookie_context(self, request_is_https: bool) -> CookieContext:
        """Snapshot of the cookie placement settings for one request."""
        return CookieContext(
            home_url_scheme=self.home_url_scheme,
            admin_path=self.ADMIN_COOKIE_PATH,
            plugins_path=self.PLUGINS_COOKIE_PATH,
            cookie_path=self.COOKIEPATH,
            site_cookie_path=self.SITECOOKIEPATH,
            domain=self.COOKIE_DOMAIN or None,
            request_is_https=request_is_https,
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
