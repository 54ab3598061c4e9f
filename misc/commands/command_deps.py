from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Callable


def _default_false(*args, **kwargs) -> bool:
    return False


@dataclass(frozen=True)
class CommandDeps:
    # Core/shared
    store: Any = None
    db_lock: Any = None
    db_conn: Any = None
    send_chunked: Callable | None = None
    fetch_channel: Callable | None = None

    # Store/service functions
    list_schema_migrations_sync: Callable | None = None
    conversation_name_func: Callable | None = None
    validate_prompt_func: Callable[[str], None] | None = None


@dataclass(frozen=True)
class CommandGates:
    in_allowed_channel: Callable[[Any], bool] = _default_false
    allowed_channel_ids: set[int] = field(default_factory=set)
    user_is_owner: Callable[[Any], bool] = _default_false
