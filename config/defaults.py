from __future__ import annotations

import os

CONFIG_DIR = os.path.dirname(os.path.abspath(__file__))

DEFAULT_DB_PATH = "relay_history.db"
DEFAULT_MODEL = "gpt-3.5-turbo"
DEFAULT_MAX_TOKENS = 256
DEFAULT_TEMPERATURE = 0.5
DEFAULT_COMPLETION_TIMEOUT_SECONDS = 60.0
DEFAULT_TIMEZONE = "UTC"

DEFAULT_PROMPT_PATH = os.path.join(CONFIG_DIR, "default_prompt.jinja")
DEFAULT_MODERATION_RESPONSES_PATH = os.path.join(CONFIG_DIR, "moderation_responses.txt")
DEFAULT_FUNCTIONS_PATH = os.path.join(CONFIG_DIR, "functions.yml")

DISCORD_MAX_MESSAGE_LEN = 1900  # keep under 2000 hard limit

FALLBACK_MODERATION_RESPONSES = (
    "Neigh. I'm not touching that one.",
    "Crikey, I'm not sure what to say",
)
