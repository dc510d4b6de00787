"""Startup-time helpers: one redacted config line per service boot."""

from pydantic_settings import BaseSettings

from magsub.common.logging import logger

_SECRET_MARKERS = ("key", "secret", "password", "token")


def redact(name: str, value) -> str:
    """Render a setting for logs, hiding secrets and DSN credentials."""

    text = str(value)
    if any(marker in name.lower() for marker in _SECRET_MARKERS):
        return "<redacted>" if text else "<unset>"
    if name.endswith("_url") and "@" in text:
        # user:password@host
        scheme, _, rest = text.partition("://")
        return f"{scheme}://<redacted>@{rest.rsplit('@', 1)[-1]}"
    return text


def log_startup_config(app_settings: BaseSettings, fields: list[str]) -> dict[str, str]:
    """Log the chosen settings fields of the service that is booting."""

    config = {name: redact(name, getattr(app_settings, name)) for name in fields}
    logger.info("startup_config service=%s config=%s", getattr(app_settings, "service_name", "?"), config)
    return config
