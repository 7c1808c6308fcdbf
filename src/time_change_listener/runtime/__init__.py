"""Runtime module for the listener's child process and its stdio streams.

This module provides isolated process spawning, reliable termination and the
line protocol (commands in, notifications and diagnostics out).
"""

from __future__ import annotations

from .process import IS_WINDOWS, spawn_piped, terminate_process
from .streams import Command, CommandChannel, ErrorReader, LineReader, NotificationReader

__all__ = [
    "IS_WINDOWS",
    "spawn_piped",
    "terminate_process",
    "Command",
    "CommandChannel",
    "LineReader",
    "NotificationReader",
    "ErrorReader",
]
