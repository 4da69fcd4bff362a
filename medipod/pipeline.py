"""
Per-message entry point.

Messages from one identity are handled strictly in arrival order: an
in-process FIFO lock per identity plus the session store's own lock for
other workers. Different identities run concurrently.
"""

from medipod.booking.effects import EffectExecutor
from medipod.conversation.state_machine import ConversationStateMachine
from medipod.errors import SessionExpired
from medipod.logging_context import get_user_logger, set_user_id
from medipod.prompts import templates
from medipod.schemas.message_schema import InboundMessage, OutboundMessage
from medipod.schemas.session_schema import Session
from medipod.storage.session_store import KeyedLock, SessionStore
from medipod.utils import normalize_phone

logger = get_user_logger(__name__)


class MessagePipeline:
    def __init__(
        self,
        store: SessionStore,
        machine: ConversationStateMachine,
        executor: EffectExecutor,
    ) -> None:
        self._store = store
        self._machine = machine
        self._executor = executor
        self._locks = KeyedLock()

    async def _load(self, identity: str) -> Session:
        try:
            # put() below sets the expiry, or keeps it for a committing turn
            session = await self._store.get(identity, extend=False)
        except SessionExpired:
            logger.info("Session for %s expired, starting over", identity)
            session = None
        if session is None:
            session = Session(identity=identity)
            logger.info("New session for %s", identity)
        return session

    async def handle(self, message: InboundMessage) -> list[OutboundMessage]:
        """Process one inbound message and return the replies to send."""
        identity = normalize_phone(message.sender)
        set_user_id(identity)
        try:
            async with self._locks.hold(identity):
                async with self._store.lock(identity):
                    bodies = await self._process(identity, message.text or "")
        except Exception:
            logger.exception("Failed to handle message from %s", identity)
            bodies = [templates.GENERIC_ERROR]
        return [OutboundMessage(target=identity, body=body) for body in bodies]

    async def _process(self, identity: str, text: str) -> list[str]:
        session = await self._load(identity)
        result = self._machine.step(session, text)
        if result.error is not None:
            logger.debug("Validation in %s: %s", session.state.value, result.error)
        self._machine.apply(session, result)

        outcome = await self._executor.run(session, result.effects)
        bodies = list(outcome.messages)
        if outcome.follow_up is not None:
            self._machine.fire(session, outcome.follow_up)
            bodies.append(self._machine.follow_up_prompt(session, outcome.follow_up))
        elif result.reply:
            bodies.append(result.reply)

        await self._store.put(identity, session, keep_ttl=outcome.committed)
        logger.debug("Session %s now in %s", identity, session.state.value)
        return bodies
