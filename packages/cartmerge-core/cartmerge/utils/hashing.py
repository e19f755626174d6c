"""Run ID and request ID generation."""

from __future__ import annotations

import uuid


def generate_run_id() -> str:
    """Generate a unique run ID."""
    return str(uuid.uuid4())


def generate_request_id() -> str:
    return uuid.uuid4().hex[:12]
