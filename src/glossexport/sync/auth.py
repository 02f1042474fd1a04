"""Content store credential lookup and log scrubbing.

Resolution order:
1. Explicit token (Settings.token / GLOSSEXPORT_TOKEN)
2. Token file (~/.glossexport/token) with 0600 permissions
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

# GitHub token shapes: classic (ghp_, gho_, ...), fine-grained (github_pat_)
TOKEN_PATTERN = re.compile(r"\b(?:gh[pousr]_[A-Za-z0-9]{20,}|github_pat_[A-Za-z0-9_]{20,})")
BEARER_PATTERN = re.compile(r"(Bearer\s+)[^\s'\"]+", re.IGNORECASE)


class AuthError(Exception):
    """No usable credential was found."""

    pass


class SecurityError(Exception):
    """Security violation."""

    pass


def read_token_file(path: Path) -> str | None:
    """Read a token file, refusing group/world readable files.

    Returns:
        Token string or None if the file does not exist

    Raises:
        SecurityError: If token file has unsafe permissions
    """
    if not path.exists():
        return None

    mode = path.stat().st_mode & 0o777
    if mode != 0o600:
        raise SecurityError(
            f"Token file has unsafe permissions: {oct(mode)}. "
            f"Expected 0600. Please fix: chmod 600 {path}"
        )
    token = path.read_text().strip()
    return token or None


def resolve_token(token: str | None, token_path: Path) -> str:
    """Return the bearer token to use for the content store.

    Raises:
        AuthError: If neither source provides a token
        SecurityError: If the token file has unsafe permissions
    """
    if token:
        return token

    stored = read_token_file(token_path)
    if stored:
        logger.debug("Using token from %s", token_path)
        return stored

    raise AuthError(
        "No content store token configured. "
        f"Set GLOSSEXPORT_TOKEN or write one to {token_path} (mode 0600)."
    )


def scrub_secrets(text: str) -> str:
    """Mask tokens and bearer credentials in text destined for logs."""
    text = BEARER_PATTERN.sub(r"\1[REDACTED]", text)
    return TOKEN_PATTERN.sub("[REDACTED]", text)


class MaskingFilter(logging.Filter):
    """Log filter that masks credentials."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = scrub_secrets(record.msg)
        if isinstance(record.args, dict):
            record.args = {k: _scrub_arg(v) for k, v in record.args.items()}
        elif record.args:
            record.args = tuple(_scrub_arg(a) for a in record.args)
        return True


def _scrub_arg(value):
    return scrub_secrets(value) if isinstance(value, str) else value


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str = "info") -> None:
    """Configure root logging with credential masking."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Replace our handler on repeated calls instead of stacking them
    for existing in list(root_logger.handlers):
        if getattr(existing, "_glossexport", False):
            root_logger.removeHandler(existing)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    # Handler-level so records from every logger pass through it
    handler.addFilter(MaskingFilter())
    handler._glossexport = True
    root_logger.addHandler(handler)

    # httpx logs every request URL at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
