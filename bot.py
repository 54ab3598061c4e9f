import os
import sqlite3
import asyncio
from datetime import datetime, timezone
import discord
from discord.ext import commands
from openai import OpenAI
from config.defaults import DEFAULT_COMPLETION_TIMEOUT_SECONDS
from config.defaults import DEFAULT_DB_PATH
from config.defaults import DEFAULT_FUNCTIONS_PATH
from config.defaults import DEFAULT_MAX_TOKENS
from config.defaults import DEFAULT_MODEL
from config.defaults import DEFAULT_MODERATION_RESPONSES_PATH
from config.defaults import DEFAULT_PROMPT_PATH
from config.defaults import DEFAULT_TEMPERATURE
from config.defaults import DEFAULT_TIMEZONE
from conversation.store import ConversationStore
from db.migrate import apply_sqlite_migrations
from db.migrate import list_schema_migrations_sync
from misc.discord_gates import parse_id_set
from misc.discord_send import send_chunked
from misc.runtime_wiring import wire_bot_runtime
from relay.completion import CompletionService
from relay.completion import load_function_declarations
from relay.mentions import MentionCodec
from relay.orchestrator import ReplyOrchestrator
from relay.orchestrator import load_moderation_responses
from relay.prompting import build_prompt_variables
from relay.prompting import load_prompt_template
from relay.prompting import render_prompt

# =========================
# ENV
# =========================
DISCORD_TOKEN = os.getenv("DISCORD_TOKEN")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

if not DISCORD_TOKEN:
    raise RuntimeError("Missing DISCORD_TOKEN env var")
if not OPENAI_API_KEY:
    raise RuntimeError("Missing OPENAI_API_KEY env var")

DEFAULT_CONVERSATION_MODEL = os.getenv("RELAY_DEFAULT_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL

try:
    DEFAULT_CONVERSATION_MAX_TOKENS = int(os.getenv("RELAY_DEFAULT_MAX_TOKENS", str(DEFAULT_MAX_TOKENS)).strip())
except ValueError:
    DEFAULT_CONVERSATION_MAX_TOKENS = DEFAULT_MAX_TOKENS
if DEFAULT_CONVERSATION_MAX_TOKENS <= 0:
    print(f"[CFG] invalid RELAY_DEFAULT_MAX_TOKENS; falling back to {DEFAULT_MAX_TOKENS}")
    DEFAULT_CONVERSATION_MAX_TOKENS = DEFAULT_MAX_TOKENS

try:
    COMPLETION_TIMEOUT_SECONDS = float(
        os.getenv("RELAY_COMPLETION_TIMEOUT_SECONDS", str(DEFAULT_COMPLETION_TIMEOUT_SECONDS)).strip()
    )
except ValueError:
    COMPLETION_TIMEOUT_SECONDS = DEFAULT_COMPLETION_TIMEOUT_SECONDS
if COMPLETION_TIMEOUT_SECONDS <= 0:
    COMPLETION_TIMEOUT_SECONDS = DEFAULT_COMPLETION_TIMEOUT_SECONDS

PROMPT_PATH = os.getenv("RELAY_PROMPT_PATH", DEFAULT_PROMPT_PATH).strip()
MODERATION_RESPONSES_PATH = os.getenv("RELAY_MODERATION_RESPONSES_PATH", DEFAULT_MODERATION_RESPONSES_PATH).strip()
# Set to an empty string to disable function calling.
FUNCTIONS_PATH = os.getenv("RELAY_FUNCTIONS_PATH", DEFAULT_FUNCTIONS_PATH).strip()
TIMEZONE_NAME = os.getenv("RELAY_TIMEZONE", DEFAULT_TIMEZONE).strip() or DEFAULT_TIMEZONE

OWNER_USER_IDS = parse_id_set(os.getenv("RELAY_OWNER_USER_IDS", ""))
ALLOWED_CHANNEL_IDS = parse_id_set(os.getenv("RELAY_ALLOWED_CHANNEL_IDS", ""))

# Railway persistent path (set this to your mounted volume path)
DB_PATH = os.getenv("RELAY_DB_PATH", DEFAULT_DB_PATH).strip() or DEFAULT_DB_PATH

print(
    f"[CFG] model={DEFAULT_CONVERSATION_MODEL} max_tokens={DEFAULT_CONVERSATION_MAX_TOKENS} "
    f"timeout={COMPLETION_TIMEOUT_SECONDS:.0f}s timezone={TIMEZONE_NAME} "
    f"owner_ids={len(OWNER_USER_IDS)} "
    f"allowed_channels={'(all)' if not ALLOWED_CHANNEL_IDS else len(ALLOWED_CHANNEL_IDS)}"
)

client = OpenAI(api_key=OPENAI_API_KEY, timeout=COMPLETION_TIMEOUT_SECONDS)
print(f"[OpenAI] client ready timeout={COMPLETION_TIMEOUT_SECONDS:.0f}s")


# =========================
# DB
# =========================
def init_db(db_path: str) -> sqlite3.Connection:
    # check_same_thread=False because discord.py event loop + to_thread usage
    conn = sqlite3.connect(db_path, check_same_thread=False)
    cur = conn.cursor()

    cur.execute("PRAGMA journal_mode=WAL;")
    cur.execute("PRAGMA synchronous=NORMAL;")
    repo_root = os.path.dirname(os.path.abspath(__file__))
    migrations_dir = os.path.join(repo_root, "migrations")
    applied = apply_sqlite_migrations(conn, migrations_dir)
    print(f"[DB] migrations applied this boot: {', '.join(applied) if applied else '(none)'}")

    try:
        cols = [r[1] for r in cur.execute("PRAGMA table_info(history)").fetchall()]
        missing = [c for c in ("id", "conversation_id", "role", "content") if c not in cols]
        print(f"[DB] history schema OK={not missing} missing={missing}")
    except sqlite3.Error as e:
        print(f"[DB] Schema verification failed: {e}")
    return conn


print(f"[DB] Using DB_PATH={DB_PATH}")
print(f"[DB] DB file exists? {os.path.exists(DB_PATH)}")
db_conn = init_db(DB_PATH)
db_lock = asyncio.Lock()


def utc_iso(dt: datetime | None = None) -> str:
    dt = dt or datetime.now(timezone.utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


# =========================
# RELAY
# =========================
PROMPT_TEMPLATE, _prompt_warning = load_prompt_template(PROMPT_PATH)
if _prompt_warning:
    print(f"[CFG] {_prompt_warning}")

MODERATION_RESPONSES, _moderation_warning = load_moderation_responses(MODERATION_RESPONSES_PATH)
if _moderation_warning:
    print(f"[CFG] {_moderation_warning}")

FUNCTIONS, _functions_warning = load_function_declarations(FUNCTIONS_PATH)
if _functions_warning:
    print(f"[CFG] {_functions_warning}")
print(
    f"[CFG] prompt={PROMPT_PATH or '(builtin)'} moderation_responses={len(MODERATION_RESPONSES)} "
    f"functions={[f['name'] for f in FUNCTIONS]}"
)


def validate_prompt_template(template: str) -> None:
    """Render a candidate override with sample values; raises TemplateError if it would fail at reply time."""
    render_prompt(
        template,
        build_prompt_variables(
            now=datetime.now(timezone.utc),
            server_name="server",
            channel_name="channel",
            channel_topic="topic",
            user_nick="user",
            bot_nick="bot",
        ),
    )


validate_prompt_template(PROMPT_TEMPLATE)

store = ConversationStore(
    db_conn=db_conn,
    db_lock=db_lock,
    default_model=DEFAULT_CONVERSATION_MODEL,
    default_max_tokens=DEFAULT_CONVERSATION_MAX_TOKENS,
    utc_iso=utc_iso,
)
orchestrator = ReplyOrchestrator(
    store=store,
    completion=CompletionService(
        client=client,
        timeout_seconds=COMPLETION_TIMEOUT_SECONDS,
        functions=FUNCTIONS,
    ),
    mentions=MentionCodec(),
    default_prompt=PROMPT_TEMPLATE,
    moderation_responses=MODERATION_RESPONSES,
    temperature=DEFAULT_TEMPERATURE,
)


def user_is_owner(user: discord.abc.User) -> bool:
    uid = int(getattr(user, "id", 0) or 0)
    return bool(uid) and uid in OWNER_USER_IDS


# =========================
# DISCORD BOT
# =========================
intents = discord.Intents.default()
intents.message_content = True

bot = commands.Bot(command_prefix="!", intents=intents)

wire_bot_runtime(
    bot,
    orchestrator=orchestrator,
    store=store,
    allowed_channel_ids=ALLOWED_CHANNEL_IDS,
    user_is_owner=user_is_owner,
    list_schema_migrations_sync=list_schema_migrations_sync,
    validate_prompt_func=validate_prompt_template,
    db_lock=db_lock,
    db_conn=db_conn,
    send_chunked=send_chunked,
    timezone_name=TIMEZONE_NAME,
    command_prefix="!",
)


bot.run(DISCORD_TOKEN)
