"""Query orchestration: one session in focus, one turn at a time."""

import asyncio
import logging

from ..errors import ProviderError, StorageError, ValidationError
from ..llm import LLMProvider
from ..llm.models import ModelInfo, QueryOptions
from ..sessions import AppPreferences, ChatMessage, ChatSession, Sender, SessionStore
from ..sessions.base import sort_sessions
from ..validation import validate_session_settings
from .context import build_prompt
from .data_structures import (
    CANCELED_MARKER,
    ChatCallbacks,
    ChatDefaults,
    TurnHandler,
    TurnResult,
    TurnState,
    TurnStatus,
    error_marker,
)

logger = logging.getLogger(__name__)

_ACTIVE_STATES = (TurnState.SENDING, TurnState.STREAMING)


class ChatOrchestrator:
    """Drives query turns for the session in focus.

    Hidden design decisions:
    - Turns run as background asyncio tasks; cancelling the task aborts
      the provider request
    - Chunks accumulate into a single assistant message per turn
    - Cancellation and failures are recorded as assistant marker messages
    - Automatic saves log and swallow storage errors; explicit session
      operations let them propagate
    """

    def __init__(
        self,
        provider: LLMProvider,
        store: SessionStore,
        defaults: ChatDefaults | None = None,
        callbacks: ChatCallbacks | None = None,
        system_prompt: str | None = None
    ):
        """Initialize the orchestrator.

        Args:
            provider: LLM provider used for queries
            store: Session store (already connected)
            defaults: Global defaults for model and sampling
            callbacks: Front-end notifications
            system_prompt: Preamble override (or get_system_prompt())
        """
        self._provider = provider
        self._store = store
        self._defaults = defaults or ChatDefaults()
        self._callbacks = callbacks or ChatCallbacks()
        self._system_prompt = system_prompt

        self._preferences = AppPreferences(default_model=self._defaults.default_model)
        self._session: ChatSession | None = None
        self._sessions: list[ChatSession] = []
        self._state = TurnState.IDLE
        self._handler: TurnHandler | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._handler is not None and not self._handler.done()

    @property
    def current_session(self) -> ChatSession:
        """A copy of the session in focus."""
        return self._require_session().model_copy(deep=True)

    @property
    def sessions(self) -> list[ChatSession]:
        """Known sessions, most recently updated first."""
        return [s.model_copy(deep=True) for s in self._sessions]

    @property
    def preferences(self) -> AppPreferences:
        return self._preferences.model_copy()

    def effective_model(self) -> str:
        """Session override, else the preferred default, else the configured default."""
        default_model = self._preferences.default_model or self._defaults.default_model
        if self._session is None:
            return default_model
        return self._session.effective_model(default_model)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> ChatSession:
        """Load preferences and sessions, then focus the most recent one.

        A new session is created when the store holds none.

        Raises:
            StorageError: If sessions cannot be listed
        """
        try:
            await self._store.ping()
        except StorageError as e:
            logger.warning("Session store health check failed error=%s", e)

        try:
            preferences = await self._store.load_preferences()
        except StorageError as e:
            logger.warning("Could not load preferences, using defaults error=%s", e)
        else:
            # Never-saved preferences defer to the configured default model
            if "default_model" not in preferences.model_fields_set:
                preferences.default_model = self._defaults.default_model
            self._preferences = preferences

        sessions = await self._store.list_sessions()
        if sessions:
            self._session = sessions[0]
            self._set_sessions(sessions)
            logger.info(
                "Resumed session session_id=%s sessions=%d", self._session.id, len(sessions)
            )
        else:
            self._session = self._new_session()
            await self._autosave(self._session)
            logger.info("Created first session session_id=%s", self._session.id)

        return self.current_session

    async def close(self) -> None:
        """Abort any turn, save the session in focus and release the provider."""
        await self._abort_turn()
        if self._session is not None:
            await self._autosave(self._session)
        await self._provider.close()

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def submit_user_message(self, text: str) -> TurnHandler | None:
        """Start a turn for ``text``.

        Returns:
            TurnHandler to await for the TurnResult, or None when the text is
            blank or a turn is already in flight
        """
        if not text or not text.strip():
            return None
        if self.is_busy:
            logger.debug("Ignoring submit while a turn is in flight")
            return None

        session = self._require_session()
        prompt = build_prompt(session, text, self._system_prompt)
        session.add_message(ChatMessage(sender=Sender.USER, content=text))

        model = self.effective_model()
        options = QueryOptions(
            temperature=session.temperature,
            max_tokens=self._defaults.max_tokens,
        )

        self._state = TurnState.SENDING
        handler = TurnHandler(session_id=session.id)
        handler.background_task = asyncio.create_task(
            self._run_turn(handler, session, model, prompt, options)
        )
        self._handler = handler

        # Once started, a cancellation lands inside the turn and is recorded
        await handler.started.wait()
        return handler

    def cancel_current_turn(self) -> bool:
        """Cancel the in-flight turn.

        Returns:
            True if a cancellation was issued, False if there was nothing to
            cancel or a cancellation was already requested
        """
        handler = self._handler
        if handler is None or handler.done() or handler.cancel_requested:
            return False
        if not handler.started.is_set():
            return False
        if self._state not in _ACTIVE_STATES:
            return False

        handler.cancel_requested = True
        logger.info("Cancelling turn session_id=%s", handler.session_id)
        return handler.cancel()

    async def _run_turn(
        self,
        handler: TurnHandler,
        session: ChatSession,
        model: str,
        prompt: str,
        options: QueryOptions
    ) -> TurnResult:
        assistant: ChatMessage | None = None
        try:
            handler.started.set()
            await self._autosave(session)

            logger.info(
                "Starting turn session_id=%s model=%s prompt_length=%d",
                session.id, model, len(prompt),
            )
            async for chunk in self._provider.stream_query(model, prompt, options):
                self._state = TurnState.STREAMING
                if assistant is None:
                    assistant = session.add_message(
                        ChatMessage(sender=Sender.ASSISTANT, content=chunk.text)
                    )
                else:
                    assistant.content += chunk.text
                    session.touch()
                self._callbacks.on_chunk(chunk.text, chunk.is_new_turn)

        except asyncio.CancelledError:
            self._state = TurnState.CANCELED
            session.add_message(ChatMessage(sender=Sender.ASSISTANT, content=CANCELED_MARKER))
            logger.info("Turn canceled session_id=%s", session.id)
            return await self._finish_turn(session, assistant, TurnStatus.CANCELED)

        except ProviderError as e:
            self._state = TurnState.FAILED
            session.add_message(ChatMessage(sender=Sender.ASSISTANT, content=error_marker(str(e))))
            logger.error(
                "Turn failed session_id=%s kind=%s error=%s", session.id, e.kind.value, e
            )
            return await self._finish_turn(session, assistant, TurnStatus.FAILED, str(e))

        except Exception as e:
            self._state = TurnState.FAILED
            session.add_message(ChatMessage(sender=Sender.ASSISTANT, content=error_marker(str(e))))
            logger.exception("Unexpected error during turn session_id=%s", session.id)
            return await self._finish_turn(session, assistant, TurnStatus.FAILED, str(e))

        self._state = TurnState.COMPLETED
        logger.info(
            "Turn completed session_id=%s response_length=%d",
            session.id, len(assistant.content) if assistant else 0,
        )
        return await self._finish_turn(session, assistant, TurnStatus.COMPLETED)

    async def _finish_turn(
        self,
        session: ChatSession,
        assistant: ChatMessage | None,
        status: TurnStatus,
        error: str | None = None
    ) -> TurnResult:
        await self._autosave(session)
        self._state = TurnState.IDLE
        self._callbacks.on_turn_finished(status, error)
        return TurnResult(
            status=status,
            session_id=session.id,
            content=assistant.content if assistant else "",
            error=error,
        )

    async def _abort_turn(self) -> None:
        """Cancel the in-flight turn, if any, and wait for it to wind down."""
        handler = self._handler
        if handler is None or handler.done():
            return
        self.cancel_current_turn()
        await handler

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def switch_session(self, session_id: str) -> ChatSession:
        """Save the session in focus and load ``session_id`` from the store.

        Raises:
            SessionNotFoundError: If the target does not exist
            StorageError: If the target cannot be read
        """
        if self._session is not None and self._session.id == session_id:
            return self.current_session

        await self._abort_turn()
        if self._session is not None:
            await self._autosave(self._session)

        self._session = await self._store.load_session(session_id)
        logger.info("Switched session session_id=%s", session_id)
        return self.current_session

    async def create_session(self, name: str | None = None) -> ChatSession:
        """Save the session in focus, then create and focus a new one."""
        await self._abort_turn()
        if self._session is not None:
            await self._autosave(self._session)

        self._session = self._new_session(name)
        await self._autosave(self._session)
        logger.info("Created session session_id=%s", self._session.id)
        return self.current_session

    async def delete_session(self, session_id: str) -> None:
        """Delete a session; deleting the one in focus moves focus.

        Focus goes to the most recent remaining session, or to a new one.

        Raises:
            SessionNotFoundError: If the session does not exist
            StorageError: If the store cannot be read afterwards
        """
        await self._abort_turn()
        await self._store.delete_session(session_id)
        logger.info("Deleted session session_id=%s", session_id)

        remaining = await self._store.list_sessions()
        self._set_sessions(remaining)
        if self._session is None or self._session.id == session_id:
            if remaining:
                self._session = remaining[0]
            else:
                self._session = self._new_session()
                await self._autosave(self._session)

    async def refresh_sessions(self) -> list[ChatSession]:
        """Re-read the session list from the store."""
        self._set_sessions(await self._store.list_sessions())
        return self.sessions

    async def update_session_settings(
        self,
        model: str | None,
        max_context_messages: object,
        temperature: object
    ) -> ChatSession:
        """Validate raw settings input and apply it to the session in focus.

        Raises:
            ValidationError: If any field is malformed
        """
        settings = validate_session_settings(model, max_context_messages, temperature)
        session = self._require_session()

        session.model = settings.model
        session.max_context_messages = settings.max_context_messages
        session.temperature = settings.temperature
        session.touch()
        await self._autosave(session)

        logger.info(
            "Updated session settings session_id=%s model=%s max_context_messages=%d temperature=%.2f",
            session.id, settings.model or "<default>", settings.max_context_messages,
            settings.temperature,
        )
        return self.current_session

    async def select_default_model(self, model: str) -> None:
        """Make ``model`` the global default and drop the session override."""
        model = (model or "").strip()
        if not model:
            raise ValidationError("model", "model must not be empty")

        self._preferences.default_model = model
        try:
            await self._store.save_preferences(self._preferences)
        except StorageError as e:
            logger.warning("Failed to save preferences error=%s", e)

        session = self._require_session()
        session.model = ""
        session.touch()
        await self._autosave(session)
        logger.info("Selected default model model=%s", model)

    async def list_models(self) -> list[ModelInfo]:
        """Models offered by the provider.

        Raises:
            ProviderError: If the backend cannot be queried
        """
        return await self._provider.list_models()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_session(self) -> ChatSession:
        if self._session is None:
            raise RuntimeError("Orchestrator not started; call start() first")
        return self._session

    def _new_session(self, name: str | None = None) -> ChatSession:
        session = ChatSession(
            provider=self._defaults.default_provider,
            max_context_messages=self._defaults.max_context_messages,
            temperature=self._defaults.temperature,
        )
        if name and name.strip():
            session.name = name.strip()
        return session

    async def _autosave(self, session: ChatSession) -> None:
        try:
            await self._store.save_session(session)
        except StorageError as e:
            logger.warning("Auto-save failed session_id=%s error=%s", session.id, e)
            return
        self._remember(session)

    def _remember(self, session: ChatSession) -> None:
        others = [s for s in self._sessions if s.id != session.id]
        self._set_sessions([*others, session])

    def _set_sessions(self, sessions: list[ChatSession]) -> None:
        self._sessions = sort_sessions([s.model_copy(deep=True) for s in sessions])
        self._callbacks.on_session_list_changed(self.sessions)
