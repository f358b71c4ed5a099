"""
Payload redaction applied once, before an event is stored.

Two passes over every string in the payload:
- every string is scanned for secret-shaped values, which are replaced
- stdout/stderr fields are then truncated to a byte budget, with a marker
  stating how many bytes were dropped

Scanning first keeps stored stream fields within budget plus marker, since
replacing a short value with the placeholder can lengthen the text.

The pattern detector later looks for the truncation marker to report
truncated tool output, so the marker text is part of the contract.
"""

from __future__ import annotations

import re
from typing import Any

from fleetwatch.config import RedactionConfig

REDACTION_MARKER = "***REDACTED***"
TRUNCATION_MARKER = "[truncated"

_TRUNCATED_SUFFIX = re.compile(r"\n\.\.\. \[truncated \d+ bytes\]\Z")
_TRAILING_TOKEN = re.compile(r"\S+\Z")


def truncation_suffix(dropped_bytes: int) -> str:
    return f"\n... {TRUNCATION_MARKER} {dropped_bytes} bytes]"


class Redactor:
    """
    Truncates output streams and replaces secrets in event payloads.

    Patterns are applied in order. A pattern flagged ``keep_key`` is a
    ``KEY=value`` assignment: only the value is replaced.
    """

    # name: (regex, flags, keep_key)
    DEFAULT_PATTERNS: dict[str, tuple[str, int, bool]] = {
        # Auth headers
        "bearer_auth": (r"Authorization:\s*Bearer\s+[A-Za-z0-9_\-\.]+", re.IGNORECASE, False),
        "basic_auth": (r"Authorization:\s*Basic\s+[A-Za-z0-9+/=]+", re.IGNORECASE, False),

        # Provider key prefixes
        "aws_access_key": (r"AKIA[0-9A-Z]{16}", 0, False),
        "github_token": (r"gh[pousr]_[A-Za-z0-9_]{36,}", 0, False),
        "provider_key": (r"\bsk-(?:ant-)?[A-Za-z0-9_\-]{20,}", 0, False),

        # Long opaque runs
        "opaque_token": (r"\b[A-Za-z0-9_\-]{32,}\b", 0, False),
        "base64_blob": (r"[A-Za-z0-9+/]{40,}={0,2}", 0, False),

        # Shell-style assignments
        "env_assignment": (r"\b([A-Z_][A-Z0-9_]*)=([^\s]+)", 0, True),
    }

    def __init__(
        self,
        config: RedactionConfig | None = None,
        patterns: dict[str, tuple[str, int, bool]] | None = None,
        placeholder: str = REDACTION_MARKER,
    ):
        self.config = config or RedactionConfig()
        self.placeholder = placeholder
        self._compiled: list[tuple[str, re.Pattern[str], bool]] = [
            (name, re.compile(regex, flags), keep_key)
            for name, (regex, flags, keep_key) in (patterns or self.DEFAULT_PATTERNS).items()
        ]

    def redact(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Return a redacted copy of the payload. The input is not modified."""
        return self._redact_value(payload, "root")

    def redact_text(self, text: str) -> str:
        """Replace every secret-shaped match in text."""
        if not text:
            return text

        result = text
        for _name, pattern, keep_key in self._compiled:
            if keep_key:
                result = pattern.sub(lambda m: f"{m.group(1)}={self.placeholder}", result)
            else:
                result = pattern.sub(self.placeholder, result)
        return result

    @staticmethod
    def truncate(text: str, max_bytes: int) -> str:
        """
        Cut text to max_bytes of UTF-8 and append the truncation marker.

        Text ending in a marker whose preceding part fits max_bytes is
        returned unchanged, so a second pass over a stored payload is a
        no-op. Anything larger is cut, marker included.
        """
        marker = _TRUNCATED_SUFFIX.search(text)
        if marker and len(text[: marker.start()].encode("utf-8")) <= max_bytes:
            return text

        data = text.encode("utf-8")
        if len(data) <= max_bytes:
            return text

        kept = data[:max_bytes].decode("utf-8", errors="ignore")
        return kept + truncation_suffix(len(data) - max_bytes)

    def _redact_stream(self, text: str, max_bytes: int) -> str:
        text = self.redact_text(text)
        result = self.truncate(text, max_bytes)
        if result == text:
            return text

        kept = result[: _TRUNCATED_SUFFIX.search(result).start()]
        if self.redact_text(kept) == kept:
            return result

        # The cut split a match (e.g. "KEY=***REDA"); drop the partial token
        kept = _TRAILING_TOKEN.sub("", kept)
        dropped = len(text.encode("utf-8")) - len(kept.encode("utf-8"))
        return kept + truncation_suffix(dropped)

    def _redact_string(self, text: str, path: str) -> str:
        if "stdout" in path:
            return self._redact_stream(text, self.config.max_stdout_bytes)
        if "stderr" in path:
            return self._redact_stream(text, self.config.max_stderr_bytes)
        return self.redact_text(text)

    def _redact_value(self, value: Any, path: str) -> Any:
        if isinstance(value, str):
            return self._redact_string(value, path)
        if isinstance(value, dict):
            return {k: self._redact_value(v, f"{path}.{k}") for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._redact_value(v, f"{path}[{i}]") for i, v in enumerate(value)]
        return value


_default_redactor = Redactor()


def redact_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Redact a payload with the default budgets and patterns."""
    return _default_redactor.redact(payload)
