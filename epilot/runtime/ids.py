from __future__ import annotations

import itertools
import time
import uuid

_seq = itertools.count(1)


def new_id(prefix: str) -> str:
    """Time-ordered id; the sequence number keeps ids distinct within one clock tick."""

    return f"{prefix}-{time.time_ns():016x}-{next(_seq):04x}{uuid.uuid4().hex[:8]}"


def entry_id(role: str) -> str:
    return new_id(role)


def decision_entry_id() -> str:
    return new_id("user-interrupt")


def turn_id() -> str:
    return new_id("turn")
