from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable


@dataclass(frozen=True)
class RuntimeDeps:
    # core
    orchestrator: Any
    send_chunked: Callable
    allowed_channel_ids: set[int]

    # context
    timezone_name: str
    command_prefix: str = "!"
