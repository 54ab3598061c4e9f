from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

import jinja2
from jinja2 import StrictUndefined
from jinja2.sandbox import SandboxedEnvironment

from relay.errors import TemplateError

DATE_FORMAT = "Today is %A, the %d of %B, %Y. The time is %I:%M %p"

BUILTIN_PROMPT_TEMPLATE = """
You are {{ bot_nick }}, a friendly horse who hangs out in a Discord server.
{{ date }}
{% if server_name %}You are in the server "{{ server_name }}".{% endif %}
{% if channel_name %}This conversation is in #{{ channel_name }}.{% if channel_topic %} The channel topic is: {{ channel_topic }}{% endif %}{% endif %}
You are talking with {{ user_nick }}. Keep replies short, warm, and a little bit horsey.
""".strip()

_env = SandboxedEnvironment(
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
    undefined=StrictUndefined,
)


def render_prompt(template: str, variables: dict[str, Any] | None = None) -> str:
    """Render a system-prompt template; any template failure surfaces as TemplateError."""
    try:
        return _env.from_string(template or "").render(**(variables or {})).strip()
    except jinja2.TemplateError as exc:
        raise TemplateError(f"Prompt template failed to render: {exc}") from exc


def build_prompt_variables(
    *,
    now: datetime,
    server_name: str | None,
    channel_name: str | None,
    channel_topic: str | None,
    user_nick: str,
    bot_nick: str,
) -> dict[str, Any]:
    return {
        "date": now.strftime(DATE_FORMAT),
        "server_name": server_name,
        "channel_name": channel_name,
        "channel_topic": channel_topic,
        "user_nick": _at(user_nick),
        "bot_nick": _at(bot_nick),
    }


def _at(nick: str) -> str:
    nick = str(nick or "").strip()
    return nick if nick.startswith("@") else f"@{nick}"


def load_prompt_template(path: str | Path | None) -> tuple[str, str | None]:
    """
    Returns (template, warning_message). warning_message is None on clean load.
    """
    if not path:
        return (BUILTIN_PROMPT_TEMPLATE, "Prompt template path missing; using built-in template.")

    p = Path(path)
    if not p.exists():
        return (BUILTIN_PROMPT_TEMPLATE, f"Prompt template not found at {p}; using built-in template.")

    try:
        text = p.read_text(encoding="utf-8")
    except OSError as exc:
        return (BUILTIN_PROMPT_TEMPLATE, f"Failed to read prompt template {p}: {exc}; using built-in template.")

    if not text.strip():
        return (BUILTIN_PROMPT_TEMPLATE, f"Prompt template {p} is empty; using built-in template.")
    return (text, None)
