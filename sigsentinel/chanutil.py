"""Helpers for handing values between threads through queues."""

from __future__ import annotations

import queue
from typing import TypeVar

T = TypeVar("T")


def publish_latest(q: "queue.Queue[T]", value: T) -> None:
    """Put ``value`` on ``q`` without blocking, evicting the oldest item if full.

    If the queue is still full after one eviction the value is dropped.
    """
    try:
        q.put_nowait(value)
        return
    except queue.Full:
        pass
    try:
        q.get_nowait()
    except queue.Empty:
        pass
    try:
        q.put_nowait(value)
    except queue.Full:
        pass