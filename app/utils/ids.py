"""Identifier helpers."""

from __future__ import annotations

import uuid


def new_correlation_id() -> str:
    """Random 122-bit token; collisions among in-flight sagas are not a concern."""
    return uuid.uuid4().hex
