"""
Tests for the conversation pipeline send flow.
"""

import asyncio
import threading

import pytest

from calmward.schemas.chat import Author, ConversationMode
from calmward.schemas.session import Gender, UserProfile
from calmward.services.conversation_pipeline import (
    CONFIG_ERROR_MESSAGE,
    ConversationPipeline,
)
from calmward.state.activity_tracker import LAST_ACTIVITY_KEY


def _replying(text="I'm listening."):
    calls = []

    def transport(**kwargs):
        calls.append(kwargs)
        return {"reply": text}

    transport.calls = calls
    return transport


async def _wait_until_sending(pipeline, mode):
    for _ in range(200):
        if pipeline.is_sending(mode):
            return
        await asyncio.sleep(0.005)
    raise AssertionError("send never went in flight")


@pytest.mark.asyncio
async def test_send_appends_user_and_assistant_messages():
    transport = _replying("Tell me more.")
    pipeline = ConversationPipeline(base_url="http://api.test", transport=transport)

    reply = await pipeline.send("listen", "  I had a rough day  ")

    messages = pipeline.messages("listen")
    assert [m.author for m in messages] == [Author.USER, Author.ASSISTANT]
    assert messages[0].text == "I had a rough day"
    assert reply == messages[1]
    assert reply.text == "Tell me more."
    assert pipeline.messages("organize") == []
    assert not pipeline.is_sending("listen")


@pytest.mark.asyncio
async def test_whitespace_only_send_is_noop():
    transport = _replying()
    pipeline = ConversationPipeline(base_url="http://api.test", transport=transport)

    assert await pipeline.send("listen", "   ") is None

    assert pipeline.messages("listen") == []
    assert transport.calls == []


@pytest.mark.asyncio
async def test_unconfigured_endpoint_uses_config_message():
    transport = _replying()
    pipeline = ConversationPipeline(base_url="", transport=transport)

    reply = await pipeline.send(ConversationMode.ORGANIZE, "hello")

    assert reply.text == CONFIG_ERROR_MESSAGE
    assert transport.calls == []
    assert len(pipeline.messages("organize")) == 2


@pytest.mark.asyncio
async def test_disabled_ai_uses_config_message():
    transport = _replying()
    pipeline = ConversationPipeline(
        base_url="http://api.test",
        ai_enabled=False,
        transport=transport,
    )

    reply = await pipeline.send("listen", "hello")

    assert reply.text == CONFIG_ERROR_MESSAGE
    assert transport.calls == []


@pytest.mark.asyncio
async def test_same_mode_send_rejected_while_in_flight():
    gate = threading.Event()

    def transport(**kwargs):
        gate.wait(5)
        return {"reply": "ok"}

    pipeline = ConversationPipeline(
        base_url="http://api.test",
        timeout_seconds=5,
        transport=transport,
    )

    first = asyncio.create_task(pipeline.send("listen", "a"))
    await _wait_until_sending(pipeline, "listen")

    second = await pipeline.send("listen", "a")

    assert second is None
    assert [m.text for m in pipeline.messages("listen")] == ["a"]

    gate.set()
    reply = await first

    assert reply.text == "ok"
    assert len(pipeline.messages("listen")) == 2
    assert not pipeline.is_sending("listen")


@pytest.mark.asyncio
async def test_other_mode_is_independent_while_in_flight():
    gate = threading.Event()

    def transport(**kwargs):
        if kwargs["payload"]["mode"] == "solo_escuchame":
            gate.wait(5)
        return {"reply": kwargs["payload"]["mode"]}

    pipeline = ConversationPipeline(
        base_url="http://api.test",
        timeout_seconds=5,
        transport=transport,
    )

    listen = asyncio.create_task(pipeline.send("listen", "a"))
    await _wait_until_sending(pipeline, "listen")

    organize = await pipeline.send("organize", "b")

    assert organize.text == "ayudame_a_ordenar"
    assert pipeline.is_sending("listen")

    gate.set()
    assert (await listen).text == "solo_escuchame"


@pytest.mark.asyncio
async def test_request_carries_history_profile_and_token(store, make_manager):
    manager = make_manager(store)
    await manager.login(
        "ana@example.com",
        "tok-1",
        profile=UserProfile(name="Ana", gender=Gender.FEMALE),
    )
    transport = _replying("first")
    pipeline = ConversationPipeline(
        session=manager,
        base_url="http://api.test/",
        transport=transport,
    )

    await pipeline.send("organize", "one")
    await pipeline.send("organize", "two")

    call = transport.calls[-1]
    payload = call["payload"]
    assert call["base_url"] == "http://api.test"
    assert call["token"] == "tok-1"
    assert payload["mode"] == "ayudame_a_ordenar"
    assert payload["message"] == "two"
    assert payload["history"] == [
        {"role": "user", "content": "one"},
        {"role": "assistant", "content": "first"},
        {"role": "user", "content": "two"},
    ]
    assert payload["userProfile"] == {"name": "Ana", "gender": "female", "country": ""}

    await manager.shutdown()


@pytest.mark.asyncio
async def test_request_without_profile_omits_snippet(store, make_manager):
    manager = make_manager(store)
    await manager.login("ana@example.com", "tok-1")
    transport = _replying()
    pipeline = ConversationPipeline(
        session=manager,
        base_url="http://api.test",
        transport=transport,
    )

    await pipeline.send("listen", "hi")

    assert "userProfile" not in transport.calls[0]["payload"]

    await manager.shutdown()


@pytest.mark.asyncio
async def test_send_touches_activity(store, clock, make_manager):
    manager = make_manager(store)
    await manager.login("ana@example.com", "tok-1")
    clock.advance_minutes(10)
    pipeline = ConversationPipeline(
        session=manager,
        base_url="http://api.test",
        transport=_replying(),
    )

    await pipeline.send("listen", "hi")

    assert store.snapshot()[LAST_ACTIVITY_KEY] == str(clock.now)

    await manager.shutdown()


@pytest.mark.asyncio
async def test_send_rejected_when_logged_out(store, make_manager):
    manager = make_manager(store)
    await manager.restore()
    transport = _replying()
    pipeline = ConversationPipeline(
        session=manager,
        base_url="http://api.test",
        transport=transport,
    )

    assert await pipeline.send("listen", "hi") is None
    assert pipeline.messages("listen") == []


@pytest.mark.asyncio
async def test_invalid_mode_raises():
    pipeline = ConversationPipeline(base_url="http://api.test", transport=_replying())

    with pytest.raises(ValueError):
        await pipeline.send("shout", "hi")


def test_reset_discards_threads():
    pipeline = ConversationPipeline(base_url="", transport=_replying())
    pipeline._threads[ConversationMode.LISTEN].append(Author.USER, "hi")

    pipeline.reset("listen")

    assert pipeline.messages("listen") == []
