"""
Application entrypoint.

Wires storage, session, activity tracking and the conversation
pipeline together, and runs a small console chat on top of them.
"""

import asyncio
import getpass
from dataclasses import dataclass
from typing import Optional

from calmward.api.billing_client import fetch_subscription
from calmward.config import Settings, settings
from calmward.schemas.chat import ConversationMode
from calmward.services.auth_service import AuthService
from calmward.services.conversation_pipeline import ConversationPipeline
from calmward.state.session_manager import SessionManager, SessionStatus
from calmward.storage.kv_store import JsonFileKeyValueStore, KeyValueStore
from calmward.utils.logger import get_logger

logger = get_logger(__name__)

HELP_TEXT = """Commands:
  /login            sign in
  /logout           sign out
  /mode listen      just listen to me
  /mode organize    help me organize
  /timeout <min>    inactivity timeout (0 = never)
  /quit             exit
Anything else is sent to the current conversation."""


@dataclass
class CalmwardApp:
    """Composed client components."""

    session: SessionManager
    pipeline: ConversationPipeline
    auth: AuthService


def build_app(
    store: Optional[KeyValueStore] = None,
    config: Optional[Settings] = None,
) -> CalmwardApp:
    """
    Build the client components.

    Conversation threads are discarded on every login and logout.
    """
    config = config or settings
    store = store or JsonFileKeyValueStore(config.STORAGE_PATH)

    session = SessionManager(
        store,
        billing_fetcher=fetch_subscription if config.api_base_url else None,
        check_interval_seconds=config.INACTIVITY_CHECK_INTERVAL_SECONDS,
        default_timeout_minutes=config.DEFAULT_SESSION_TIMEOUT_MINUTES,
    )
    pipeline = ConversationPipeline(
        session=session,
        base_url=config.api_base_url,
        ai_enabled=config.AI_ENABLED,
        timeout_seconds=config.CHAT_TIMEOUT_SECONDS,
    )
    session.add_listener(lambda status: pipeline.reset())

    return CalmwardApp(
        session=session,
        pipeline=pipeline,
        auth=AuthService(session),
    )


async def _prompt(text: str) -> str:
    return await asyncio.to_thread(input, text)


async def _handle_login(app: CalmwardApp) -> None:
    email = await _prompt("Email: ")
    password = await asyncio.to_thread(getpass.getpass, "Password: ")

    outcome = await app.auth.sign_in(email, password)
    if outcome.ok:
        print(f"Signed in as {app.session.session.email}")
    else:
        print(outcome.error)


async def run_console(app: CalmwardApp) -> None:
    """Interactive chat loop on stdin/stdout."""
    mode = ConversationMode.LISTEN

    status = await app.session.restore()
    if status is SessionStatus.LOGGED_IN:
        print(f"Welcome back, {app.session.session.email}")
    print(HELP_TEXT)

    try:
        while True:
            line = (await _prompt(f"[{mode.value}] > ")).strip()
            if not line:
                continue

            if line == "/quit":
                break
            if line == "/login":
                await _handle_login(app)
                continue
            if line == "/logout":
                await app.session.logout()
                print("Signed out")
                continue
            if line.startswith("/mode"):
                try:
                    mode = ConversationMode(line.split(maxsplit=1)[1].strip())
                except (IndexError, ValueError):
                    print("Modes: listen, organize")
                continue
            if line.startswith("/timeout"):
                try:
                    minutes = int(line.split(maxsplit=1)[1])
                except (IndexError, ValueError):
                    print("Usage: /timeout <minutes>")
                    continue
                saved = await app.session.set_session_timeout_minutes(minutes)
                print(f"Timeout set to {saved} minutes")
                continue

            if not app.session.is_logged_in:
                print("You need to sign in to use the Calmward chat. Type /login.")
                continue

            reply = await app.pipeline.send(mode, line)
            if reply is not None:
                print(f"Calmward: {reply.text}")

    except (EOFError, KeyboardInterrupt):
        pass
    finally:
        await app.session.shutdown()


def start_app() -> None:
    """
    Start the console client.
    """
    logger.info("Starting Calmward client")
    asyncio.run(run_console(build_app()))


if __name__ == "__main__":
    start_app()
