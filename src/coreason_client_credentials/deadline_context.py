# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_client_credentials

"""
Request-scoped deadline for a reconciliation run.

The deadline is checked before each remote call. Calls already committed are never undone.
"""

import time
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

from coreason_client_credentials.exceptions import DeadlineExceededError

# Absolute deadline on the time.monotonic() clock. None means no deadline.
_current_deadline: ContextVar[float | None] = ContextVar("current_deadline", default=None)


def get_deadline() -> float | None:
    """
    Retrieve the deadline of the current reconciliation run.

    Returns:
        float | None: The monotonic deadline, or None if not set.
    """
    return _current_deadline.get()


@contextmanager
def deadline_scope(timeout: float | None) -> Iterator[float | None]:
    """
    Sets a deadline `timeout` seconds from now for the enclosed block.
    An enclosing, earlier deadline is kept.

    Args:
        timeout: Seconds until the deadline, or None to inherit the current one.
    """
    deadline = get_deadline()
    if timeout is not None:
        candidate = time.monotonic() + timeout
        deadline = candidate if deadline is None else min(deadline, candidate)

    token = _current_deadline.set(deadline)
    try:
        yield deadline
    finally:
        _current_deadline.reset(token)


def check_deadline(operation: str) -> None:
    """
    Raises if the current deadline has passed.

    Args:
        operation: Name of the remote call about to be issued, for the error message.

    Raises:
        DeadlineExceededError: If the deadline has passed.
    """
    deadline = get_deadline()
    if deadline is not None and time.monotonic() >= deadline:
        raise DeadlineExceededError(f"Deadline exceeded before {operation}; earlier calls were kept.")
