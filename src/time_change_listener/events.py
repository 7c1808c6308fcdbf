"""命令行输出的事件模型。

每个事件序列化为一行 JSON（JSONL），写到 stdout:
    {"type": "started", "timestamp": 1700000000.0, "pid": 1234}
    {"type": "change", "timestamp": 1700000001.0}
    {"type": "error", "timestamp": 1700000002.0, "message": "..."}
    {"type": "stopped", "timestamp": 1700000003.0, "returncode": 0}
"""

from __future__ import annotations

import time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

__all__ = ["EventType", "ListenerEvent"]

EventType = Literal["started", "change", "error", "stopped"]


class ListenerEvent(BaseModel):
    """监听器事件。

    Attributes:
        type: 事件类型
        timestamp: Unix 时间戳（秒）
        pid: 子进程 PID（started）
        message: 错误消息（error）
        returncode: 子进程退出码（stopped）
    """

    model_config = ConfigDict(extra="ignore")

    type: EventType
    timestamp: float = Field(default_factory=time.time)
    pid: int | None = None
    message: str | None = None
    returncode: int | None = None

    def to_json_line(self) -> str:
        """序列化为单行 JSON（省略空字段）。"""
        return self.model_dump_json(exclude_none=True)
