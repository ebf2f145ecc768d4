from __future__ import annotations

import logging
import re

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")

# Bearer tokens, JWT-looking strings and key=value secrets (loose on purpose)
TOKEN_LIKE_RE = re.compile(
    r"(?i)"
    r"("
    r"(?:bearer\s+[A-Za-z0-9._~+\-/]+=*)"
    r"|(?:eyJ[A-Za-z0-9_\-]{8,}\.[A-Za-z0-9_\-]{8,}\.[A-Za-z0-9_\-]*)"
    r"|(?:api[_-]?key\s*[=:]\s*\w{12,})"
    r"|(?:token\s*[=:]\s*\w{12,})"
    r")"
)

AUTH_HEADER_RE = re.compile(r"(?im)^(authorization:\s*)(.+)$")


class RedactionFilter(logging.Filter):
    """Logging filter that masks patient/doctor emails and credentials.

    - Emails
    - Authorization header values
    - Bearer tokens, JWTs and key-like secrets
    """

    def __init__(self, replacement: str = "***") -> None:
        super().__init__()
        self.replacement = replacement

    def redact(self, text: str) -> str:
        text = AUTH_HEADER_RE.sub(lambda m: f"{m.group(1)}{self.replacement}", text)
        text = EMAIL_RE.sub(self.replacement, text)
        return TOKEN_LIKE_RE.sub(self.replacement, text)

    def filter(self, record: logging.LogRecord) -> bool:  # always keep record
        try:
            msg = record.getMessage()
        except (TypeError, ValueError):
            return True
        redacted = self.redact(msg)
        if redacted != msg:
            record.msg = redacted
            record.args = ()
        return True


def install_redaction_filter(logger: logging.Logger | None = None, *, replacement: str = "***") -> RedactionFilter:
    """Attach one redaction filter to the logger and all of its handlers (root if None)."""
    logger = logger or logging.getLogger()
    filt = RedactionFilter(replacement=replacement)
    for h in list(logger.handlers):
        h.addFilter(filt)
    logger.addFilter(filt)
    return filt


__all__ = ["RedactionFilter", "install_redaction_filter"]
