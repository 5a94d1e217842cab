"""Unit tests for the chat orchestrator."""
import httpx
import pytest

from conftest import ndjson
from ollamachat.chat import (
    CANCELED_MARKER,
    ChatDefaults,
    ChatOrchestrator,
    TurnState,
    TurnStatus,
)
from ollamachat.errors import (
    ProviderRemoteError,
    ProviderTimeoutError,
    SessionNotFoundError,
    StorageError,
    ValidationError,
)
from ollamachat.sessions import (
    AppPreferences,
    ChatMessage,
    ChatSession,
    InMemorySessionStore,
    Sender,
)


class FailingSaveStore(InMemorySessionStore):
    """In-memory store whose saves fail once ``fail_saves`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_saves = False

    async def save_session(self, session: ChatSession) -> None:
        if self.fail_saves:
            raise StorageError("disk full", "save")
        await super().save_session(session)


def transcript(session: ChatSession) -> list[tuple[str, str]]:
    return [(m.sender.value, m.content) for m in session.messages]


async def started(provider, store, callbacks=None, **defaults) -> ChatOrchestrator:
    orchestrator = ChatOrchestrator(
        provider=provider,
        store=store,
        defaults=ChatDefaults(**defaults),
        callbacks=callbacks,
        system_prompt="SYS",
    )
    await orchestrator.start()
    return orchestrator


class TestStart:
    """Tests for ChatOrchestrator.start."""

    @pytest.mark.asyncio
    async def test_empty_store_creates_session(self, fake_provider, memory_store):
        orchestrator = await started(fake_provider(), memory_store)

        sessions = await memory_store.list_sessions()
        assert len(sessions) == 1
        assert orchestrator.current_session.id == sessions[0].id
        assert orchestrator.state is TurnState.IDLE

    @pytest.mark.asyncio
    async def test_adopts_most_recent(self, fake_provider, memory_store):
        older, newer = ChatSession(name="older"), ChatSession(name="newer")
        await memory_store.save_session(older)
        await memory_store.save_session(newer)

        orchestrator = await started(fake_provider(), memory_store)

        assert orchestrator.current_session.id == newer.id
        assert [s.id for s in orchestrator.sessions] == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_new_session_uses_defaults(self, fake_provider, memory_store):
        orchestrator = await started(
            fake_provider(), memory_store, temperature=0.3, max_context_messages=4
        )

        session = orchestrator.current_session
        assert session.temperature == 0.3
        assert session.max_context_messages == 4

    @pytest.mark.asyncio
    async def test_listing_failure_propagates(self, fake_provider):
        class UnlistableStore(InMemorySessionStore):
            async def list_sessions(self):
                raise StorageError("permission denied", "list")

        orchestrator = ChatOrchestrator(fake_provider(), UnlistableStore())

        with pytest.raises(StorageError):
            await orchestrator.start()

    @pytest.mark.asyncio
    async def test_failed_first_save_is_tolerated(self, fake_provider):
        store = FailingSaveStore()
        store.fail_saves = True

        orchestrator = await started(fake_provider(), store)

        assert orchestrator.current_session.messages == []
        assert await store.list_sessions() == []

    @pytest.mark.asyncio
    async def test_current_session_is_a_copy(self, fake_provider, memory_store):
        orchestrator = await started(fake_provider(), memory_store)

        copy = orchestrator.current_session
        copy.name = "mutated"

        assert orchestrator.current_session.name != "mutated"


class TestTurns:
    """Tests for submitting messages and streaming responses."""

    @pytest.mark.asyncio
    async def test_hello_scenario(self, ollama_provider, memory_store, callbacks):
        """End to end: Hi -> Hel + lo -> one assistant message 'Hello'."""
        body = ndjson(
            {"response": "Hel", "done": False},
            {"response": "lo", "done": False},
            {"response": "", "done": True},
        )
        provider = ollama_provider(lambda request: httpx.Response(200, content=body))
        orchestrator = await started(provider, memory_store, callbacks)

        handler = await orchestrator.submit_user_message("Hi")
        result = await handler

        assert result.status is TurnStatus.COMPLETED
        assert result.content == "Hello"
        assert callbacks.chunks == [("Hel", True), ("lo", False)]
        assert callbacks.finished == [(TurnStatus.COMPLETED, None)]
        assert transcript(orchestrator.current_session) == [("user", "Hi"), ("assistant", "Hello")]

        stored = await memory_store.load_session(result.session_id)
        assert transcript(stored) == [("user", "Hi"), ("assistant", "Hello")]
        assert orchestrator.state is TurnState.IDLE
        assert not orchestrator.is_busy

    @pytest.mark.asyncio
    async def test_prompt_uses_prior_history(self, fake_provider, memory_store):
        provider = fake_provider(["ok"])
        orchestrator = await started(provider, memory_store)

        await (await orchestrator.submit_user_message("first"))
        await (await orchestrator.submit_user_message("second"))

        assert provider.calls[0][1] == "SYS\n\nuser: first\nassistant:"
        assert provider.calls[1][1] == (
            "SYS\n\nuser: first\nassistant: ok\nuser: second\nassistant:"
        )

    @pytest.mark.asyncio
    async def test_query_options_follow_session(self, fake_provider, memory_store):
        provider = fake_provider(["ok"])
        orchestrator = await started(provider, memory_store, max_tokens=128)
        await orchestrator.update_session_settings("phi3", "3", "1.1")

        await (await orchestrator.submit_user_message("hi"))

        model, _, options = provider.calls[0]
        assert model == "phi3"
        assert options.temperature == 1.1
        assert options.max_tokens == 128

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    async def test_blank_input_is_ignored(self, fake_provider, memory_store, text):
        provider = fake_provider(["ok"])
        orchestrator = await started(provider, memory_store)

        assert await orchestrator.submit_user_message(text) is None
        assert orchestrator.current_session.messages == []
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_concurrent_submit_is_rejected(self, fake_provider, memory_store):
        provider = fake_provider(["a", "b"], pause_after=1)
        orchestrator = await started(provider, memory_store)

        handler = await orchestrator.submit_user_message("one")
        await provider.paused.wait()

        assert orchestrator.is_busy
        assert await orchestrator.submit_user_message("two") is None

        provider.release.set()
        result = await handler

        assert result.status is TurnStatus.COMPLETED
        assert transcript(orchestrator.current_session) == [("user", "one"), ("assistant", "ab")]
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_state_while_streaming(self, fake_provider, memory_store):
        provider = fake_provider(["a", "b"], pause_after=1)
        orchestrator = await started(provider, memory_store)

        handler = await orchestrator.submit_user_message("hi")
        await provider.paused.wait()

        assert orchestrator.state is TurnState.STREAMING
        assert transcript(orchestrator.current_session)[-1] == ("assistant", "a")

        provider.release.set()
        await handler
        assert orchestrator.state is TurnState.IDLE

    @pytest.mark.asyncio
    async def test_updated_at_advances_with_each_chunk(self, fake_provider, memory_store):
        provider = fake_provider(["a", "b"], pause_after=1)
        orchestrator = await started(provider, memory_store)

        handler = await orchestrator.submit_user_message("hi")
        await provider.paused.wait()
        mid = orchestrator.current_session.updated_at

        provider.release.set()
        await handler

        assert orchestrator.current_session.updated_at > mid

    @pytest.mark.asyncio
    async def test_empty_response(self, fake_provider, memory_store, callbacks):
        orchestrator = await started(fake_provider([]), memory_store, callbacks)

        result = await (await orchestrator.submit_user_message("hi"))

        assert result.status is TurnStatus.COMPLETED
        assert result.content == ""
        assert transcript(orchestrator.current_session) == [("user", "hi")]
        assert callbacks.chunks == []


class TestFailures:
    """Tests for provider failures during a turn."""

    @pytest.mark.asyncio
    async def test_mid_stream_error(self, ollama_provider, memory_store, callbacks):
        """Partial content is kept and an error marker follows it."""
        body = ndjson({"response": "Par", "done": False}, {"error": "model crashed"})
        provider = ollama_provider(lambda request: httpx.Response(200, content=body))
        orchestrator = await started(provider, memory_store, callbacks)

        result = await (await orchestrator.submit_user_message("Hi"))

        assert result.status is TurnStatus.FAILED
        assert "model crashed" in result.error
        assert result.content == "Par"
        assert transcript(orchestrator.current_session) == [
            ("user", "Hi"),
            ("assistant", "Par"),
            ("assistant", "**Error:** ollama error: model crashed"),
        ]
        assert callbacks.finished == [(TurnStatus.FAILED, "ollama error: model crashed")]
        assert orchestrator.state is TurnState.IDLE

    @pytest.mark.asyncio
    async def test_failure_before_any_chunk(self, fake_provider, memory_store):
        provider = fake_provider([], error=ProviderTimeoutError("request timed out after 30s"))
        orchestrator = await started(provider, memory_store)

        result = await (await orchestrator.submit_user_message("Hi"))

        assert result.status is TurnStatus.FAILED
        assert transcript(orchestrator.current_session) == [
            ("user", "Hi"),
            ("assistant", "**Error:** request timed out after 30s"),
        ]

    @pytest.mark.asyncio
    async def test_unexpected_exception_fails_turn(self, fake_provider, memory_store):
        provider = fake_provider(["x"], error=RuntimeError("boom"))
        orchestrator = await started(provider, memory_store)

        result = await (await orchestrator.submit_user_message("Hi"))

        assert result.status is TurnStatus.FAILED
        assert result.error == "boom"
        assert not orchestrator.is_busy

    @pytest.mark.asyncio
    async def test_next_turn_after_failure(self, fake_provider, memory_store):
        provider = fake_provider(["x"], error=ProviderRemoteError("ollama error: oops"))
        orchestrator = await started(provider, memory_store)
        await (await orchestrator.submit_user_message("one"))

        provider.error = None
        result = await (await orchestrator.submit_user_message("two"))

        assert result.status is TurnStatus.COMPLETED
        assert "**Error:** ollama error: oops" in provider.calls[1][1]

    @pytest.mark.asyncio
    async def test_autosave_failure_is_swallowed(self, fake_provider):
        store = FailingSaveStore()
        orchestrator = await started(fake_provider(["fine"]), store)
        store.fail_saves = True

        result = await (await orchestrator.submit_user_message("Hi"))

        assert result.status is TurnStatus.COMPLETED
        assert transcript(orchestrator.current_session) == [("user", "Hi"), ("assistant", "fine")]


class TestCancellation:
    """Tests for cancelling a turn."""

    @pytest.mark.asyncio
    async def test_cancel_keeps_partial_content(self, fake_provider, memory_store, callbacks):
        provider = fake_provider(["Hel", "lo"], pause_after=1)
        orchestrator = await started(provider, memory_store, callbacks)

        handler = await orchestrator.submit_user_message("Hi")
        await provider.paused.wait()

        assert orchestrator.cancel_current_turn() is True
        assert orchestrator.cancel_current_turn() is False

        result = await handler

        assert result.status is TurnStatus.CANCELED
        assert result.error is None
        assert transcript(orchestrator.current_session) == [
            ("user", "Hi"),
            ("assistant", "Hel"),
            ("assistant", CANCELED_MARKER),
        ]
        assert callbacks.finished == [(TurnStatus.CANCELED, None)]
        assert orchestrator.state is TurnState.IDLE

        stored = await memory_store.load_session(result.session_id)
        assert transcript(stored)[-1] == ("assistant", CANCELED_MARKER)

    @pytest.mark.asyncio
    async def test_cancel_before_first_chunk(self, fake_provider, memory_store):
        provider = fake_provider(["never"], pause_after=0)
        orchestrator = await started(provider, memory_store)

        handler = await orchestrator.submit_user_message("Hi")
        await provider.paused.wait()
        assert orchestrator.state is TurnState.SENDING

        orchestrator.cancel_current_turn()
        result = await handler

        assert result.status is TurnStatus.CANCELED
        assert transcript(orchestrator.current_session) == [
            ("user", "Hi"),
            ("assistant", CANCELED_MARKER),
        ]

    @pytest.mark.asyncio
    async def test_cancel_when_idle(self, fake_provider, memory_store):
        orchestrator = await started(fake_provider(), memory_store)

        assert orchestrator.cancel_current_turn() is False

    @pytest.mark.asyncio
    async def test_cancel_after_completion(self, fake_provider, memory_store):
        orchestrator = await started(fake_provider(["done"]), memory_store)
        result = await (await orchestrator.submit_user_message("Hi"))

        assert orchestrator.cancel_current_turn() is False
        assert result.status is TurnStatus.COMPLETED


class TestSessions:
    """Tests for session management through the orchestrator."""

    @pytest.mark.asyncio
    async def test_create_session(self, fake_provider, memory_store, callbacks):
        orchestrator = await started(fake_provider(), memory_store, callbacks)
        first = orchestrator.current_session

        created = await orchestrator.create_session("Research")

        assert created.name == "Research"
        assert created.id != first.id
        assert orchestrator.current_session.id == created.id
        assert [s.id for s in orchestrator.sessions] == [created.id, first.id]
        assert callbacks.session_lists[-1][0].id == created.id

    @pytest.mark.asyncio
    async def test_switch_saves_current_and_loads_target(self, fake_provider, memory_store):
        orchestrator = await started(fake_provider(["ok"]), memory_store)
        first = orchestrator.current_session
        await orchestrator.create_session()
        await (await orchestrator.submit_user_message("in second"))
        second_id = orchestrator.current_session.id

        switched = await orchestrator.switch_session(first.id)

        assert switched.id == first.id
        stored_second = await memory_store.load_session(second_id)
        assert transcript(stored_second) == [("user", "in second"), ("assistant", "ok")]

    @pytest.mark.asyncio
    async def test_switch_to_missing_session(self, fake_provider, memory_store):
        orchestrator = await started(fake_provider(), memory_store)
        current = orchestrator.current_session

        with pytest.raises(SessionNotFoundError):
            await orchestrator.switch_session("20240101-000000-missing0")

        assert orchestrator.current_session.id == current.id

    @pytest.mark.asyncio
    async def test_switch_cancels_in_flight_turn(self, fake_provider, memory_store):
        provider = fake_provider(["a", "b"], pause_after=1)
        orchestrator = await started(provider, memory_store)
        first = orchestrator.current_session
        await orchestrator.create_session()
        busy_id = orchestrator.current_session.id

        handler = await orchestrator.submit_user_message("Hi")
        await provider.paused.wait()
        await orchestrator.switch_session(first.id)

        assert handler.done()
        assert handler.result().status is TurnStatus.CANCELED
        stored = await memory_store.load_session(busy_id)
        assert transcript(stored) == [
            ("user", "Hi"),
            ("assistant", "a"),
            ("assistant", CANCELED_MARKER),
        ]
        assert orchestrator.current_session.id == first.id
        assert not orchestrator.is_busy

    @pytest.mark.asyncio
    async def test_switch_to_current_session_keeps_turn_running(self, fake_provider, memory_store):
        provider = fake_provider(["a", "b"], pause_after=1)
        orchestrator = await started(provider, memory_store)
        current_id = orchestrator.current_session.id

        handler = await orchestrator.submit_user_message("Hi")
        await provider.paused.wait()
        switched = await orchestrator.switch_session(current_id)

        assert switched.id == current_id
        assert not handler.done()
        assert orchestrator.is_busy

        provider.release.set()
        result = await handler

        assert result.status is TurnStatus.COMPLETED
        assert transcript(orchestrator.current_session) == [("user", "Hi"), ("assistant", "ab")]

    @pytest.mark.asyncio
    async def test_delete_other_session(self, fake_provider, memory_store):
        orchestrator = await started(fake_provider(), memory_store)
        first = orchestrator.current_session
        second = await orchestrator.create_session()

        await orchestrator.delete_session(first.id)

        assert orchestrator.current_session.id == second.id
        assert [s.id for s in orchestrator.sessions] == [second.id]

    @pytest.mark.asyncio
    async def test_delete_current_adopts_most_recent(self, fake_provider, memory_store):
        orchestrator = await started(fake_provider(), memory_store)
        first = orchestrator.current_session
        second = await orchestrator.create_session()

        await orchestrator.delete_session(second.id)

        assert orchestrator.current_session.id == first.id
        with pytest.raises(SessionNotFoundError):
            await memory_store.load_session(second.id)

    @pytest.mark.asyncio
    async def test_delete_last_session_creates_new(self, fake_provider, memory_store):
        orchestrator = await started(fake_provider(), memory_store)
        only = orchestrator.current_session

        await orchestrator.delete_session(only.id)

        replacement = orchestrator.current_session
        assert replacement.id != only.id
        assert [s.id for s in await memory_store.list_sessions()] == [replacement.id]
        assert [s.id for s in orchestrator.sessions] == [replacement.id]

    @pytest.mark.asyncio
    async def test_delete_missing_session(self, fake_provider, memory_store):
        orchestrator = await started(fake_provider(), memory_store)

        with pytest.raises(SessionNotFoundError):
            await orchestrator.delete_session("20240101-000000-missing0")

    @pytest.mark.asyncio
    async def test_refresh_sessions(self, fake_provider, memory_store, callbacks):
        orchestrator = await started(fake_provider(), memory_store, callbacks)
        outside = ChatSession(name="written elsewhere")
        await memory_store.save_session(outside)

        sessions = await orchestrator.refresh_sessions()

        assert sessions[0].id == outside.id
        assert callbacks.session_lists[-1][0].id == outside.id


class TestSettings:
    """Tests for per-session settings and the default model."""

    @pytest.mark.asyncio
    async def test_update_session_settings(self, fake_provider, memory_store):
        orchestrator = await started(fake_provider(), memory_store)

        updated = await orchestrator.update_session_settings("mistral", "0", "0.1")

        assert updated.model == "mistral"
        assert updated.max_context_messages == 0
        assert updated.temperature == 0.1
        stored = await memory_store.load_session(updated.id)
        assert stored.model == "mistral"

    @pytest.mark.asyncio
    async def test_invalid_settings_leave_session_unchanged(self, fake_provider, memory_store):
        orchestrator = await started(fake_provider(), memory_store)
        before = orchestrator.current_session

        with pytest.raises(ValidationError):
            await orchestrator.update_session_settings("mistral", "3", "5")

        after = orchestrator.current_session
        assert after.model == before.model
        assert after.temperature == before.temperature

    @pytest.mark.asyncio
    async def test_effective_model_precedence(self, fake_provider, memory_store):
        orchestrator = await started(fake_provider(), memory_store, default_model="config-model")
        assert orchestrator.effective_model() == "config-model"

        await orchestrator.update_session_settings("session-model", "10", "0.7")
        assert orchestrator.effective_model() == "session-model"

    @pytest.mark.asyncio
    async def test_saved_preferences_win_over_config(self, fake_provider, memory_store):
        await memory_store.save_preferences(AppPreferences(default_model="saved-model"))

        orchestrator = await started(fake_provider(), memory_store, default_model="config-model")

        assert orchestrator.effective_model() == "saved-model"

    @pytest.mark.asyncio
    async def test_select_default_model(self, fake_provider, memory_store):
        orchestrator = await started(fake_provider(), memory_store)
        await orchestrator.update_session_settings("session-model", "10", "0.7")

        await orchestrator.select_default_model("gemma2")

        assert orchestrator.current_session.model == ""
        assert orchestrator.effective_model() == "gemma2"
        assert (await memory_store.load_preferences()).default_model == "gemma2"

    @pytest.mark.asyncio
    async def test_select_empty_model(self, fake_provider, memory_store):
        orchestrator = await started(fake_provider(), memory_store)

        with pytest.raises(ValidationError):
            await orchestrator.select_default_model("  ")


class TestLifecycle:
    """Tests for listing models and shutting down."""

    @pytest.mark.asyncio
    async def test_list_models(self, fake_provider, memory_store):
        orchestrator = await started(fake_provider(models=["a", "b"]), memory_store)

        assert [m.name for m in await orchestrator.list_models()] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_close_cancels_and_saves(self, fake_provider, memory_store):
        provider = fake_provider(["a", "b"], pause_after=1)
        orchestrator = await started(provider, memory_store)

        handler = await orchestrator.submit_user_message("Hi")
        await provider.paused.wait()
        await orchestrator.close()

        assert provider.closed
        assert handler.result().status is TurnStatus.CANCELED
        stored = await memory_store.load_session(handler.session_id)
        assert transcript(stored)[-1] == ("assistant", CANCELED_MARKER)

    @pytest.mark.asyncio
    async def test_requires_start(self, fake_provider, memory_store):
        orchestrator = ChatOrchestrator(fake_provider(), memory_store)

        with pytest.raises(RuntimeError):
            await orchestrator.submit_user_message("Hi")

    @pytest.mark.asyncio
    async def test_messages_are_not_shared_with_store(self, fake_provider, memory_store):
        orchestrator = await started(fake_provider(["ok"]), memory_store)
        await (await orchestrator.submit_user_message("Hi"))

        stored = await memory_store.load_session(orchestrator.current_session.id)
        stored.messages.append(ChatMessage(sender=Sender.USER, content="sneaky"))

        assert len(orchestrator.current_session.messages) == 2
