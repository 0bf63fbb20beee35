"""Sensitive data redaction — scrub keys and tokens out of outgoing notifications."""

from __future__ import annotations

import re

REDACTION_PATTERNS: list[tuple[str, str]] = [
    # Anthropic API keys
    (r"sk-ant-api\S+", "[REDACTED:ANTHROPIC_KEY]"),
    # Generic API keys
    (r"sk-[a-zA-Z0-9]{20,}", "[REDACTED:API_KEY]"),
    (r"key-[a-zA-Z0-9]{20,}", "[REDACTED:API_KEY]"),
    # GitHub tokens
    (r"gh[pousr]_[a-zA-Z0-9]{36}", "[REDACTED:GITHUB_TOKEN]"),
    # AWS access keys
    (r"AKIA[0-9A-Z]{16}", "[REDACTED:AWS_KEY]"),
    # Slack tokens
    (r"xox[bpoas]-[a-zA-Z0-9\-]+", "[REDACTED:SLACK_TOKEN]"),
    # Telegram bot tokens
    (r"\b\d{8,10}:[A-Za-z0-9_-]{35}\b", "[REDACTED:BOT_TOKEN]"),
    # Private key blocks
    (r"-----BEGIN [A-Z ]+KEY-----", "[REDACTED:PRIVATE_KEY]"),
    # Secrets assigned in shell output
    (r"(?i)(password|secret|token|api_key)\s*=\s*\S+", r"\1=[REDACTED]"),
    (r"Bearer\s+[a-zA-Z0-9\-._~+/]+=*", "Bearer [REDACTED]"),
]

_compiled = [(re.compile(p, re.MULTILINE), r) for p, r in REDACTION_PATTERNS]


def redact_sensitive(text: str) -> str:
    """Redact secrets from a notification before it leaves the machine.

    Captured variables are interpolated verbatim into notification text,
    so anything a pane prints can end up in a message.

    Args:
        text: Text that may contain sensitive data.

    Returns:
        Text with matches replaced by ``[REDACTED...]`` placeholders.
    """
    for pattern, replacement in _compiled:
        text = pattern.sub(replacement, text)
    return text
