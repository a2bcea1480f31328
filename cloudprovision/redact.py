from __future__ import annotations

import re
from typing import Any, Dict, Mapping, Pattern

# Key=value secrets as they show up in terraform / gcloud diagnostics
ENV_SECRET_PATTERNS: list[Pattern[str]] = [
    re.compile(r"\b(TF_VAR_[A-Za-z0-9_]*(?:password|secret|token)[A-Za-z0-9_]*)\s*=\s*([^\s]+)", re.I),
    re.compile(r"\b(password|default_password|api_key|apikey|token|secret)\s*[:=]\s*([^\s,]+)", re.I),
]

# Bearer tokens
BEARER_RE = re.compile(r"Bearer\s+[A-Za-z0-9\-\._~\+\/]+=*", re.I)

# Variable names whose values never reach logs
SECRET_KEY_RE = re.compile(r"(password|secret|token|api_?key|private_key)", re.I)


def redact_text(text: str) -> str:
    out = text or ""

    for pat in ENV_SECRET_PATTERNS:
        out = pat.sub(r"\1=<REDACTED>", out)

    return BEARER_RE.sub("Bearer <REDACTED>", out)


def redact_variables(variables: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of a variables mapping with secret-looking values masked."""
    return {
        key: "<REDACTED>" if SECRET_KEY_RE.search(key) and value not in (None, "") else value
        for key, value in (variables or {}).items()
    }
