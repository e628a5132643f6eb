"""
Turn handler: one inbound WhatsApp message, start to finish.

    per-user lock -> load session -> normalize event -> engine
    -> send replies -> persist (only if changed)

Any failure inside the turn is logged and answered with an apology; the
session is left as it was (no partial commit).
"""
import logging
from contextlib import nullcontext
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from pharmabot.agent import replies
from pharmabot.agent.dialogue_engine import DialogueEngine
from pharmabot.core.user_locks import UserLockRegistry
from pharmabot.schemas.session import Session
from pharmabot.schemas.webhook import InboundEvent, InboundMessage
from pharmabot.services.session_store import SessionStore
from pharmabot.whatsapp.client import WhatsAppClient

logger = logging.getLogger(__name__)


class MessageHandler:
    def __init__(
        self,
        sessions: SessionStore,
        engine: DialogueEngine,
        whatsapp: WhatsAppClient,
        locks: Optional[UserLockRegistry] = None,
    ):
        self.sessions = sessions
        self.engine = engine
        self.whatsapp = whatsapp
        self.locks = locks

    async def handle(self, phone_number: str, raw_message: Union[InboundMessage, Dict[str, Any]]) -> None:
        guard = self.locks.hold(phone_number) if self.locks is not None else nullcontext()
        async with guard:
            await self._run_turn(phone_number, raw_message)

    async def _run_turn(self, phone_number: str, raw_message):
        try:
            message = raw_message if isinstance(raw_message, InboundMessage) \
                else InboundMessage.model_validate(raw_message)
        except ValidationError as e:
            logger.warning(f"[Turn] Dropping malformed message from {phone_number}: {e.error_count()} errors")
            return

        logger.info(f"[Turn] Message from {phone_number}: type={message.type}")
        try:
            session = await self.sessions.get(phone_number)
            event = InboundEvent.from_message(message)
            result = await self.engine.handle(session, event)
        except Exception:
            logger.exception(f"[Turn] Failed to handle message from {phone_number}")
            await self.whatsapp.send(phone_number, replies.text(replies.APOLOGY))
            return

        for outbound in result.messages:
            await self.whatsapp.send(phone_number, outbound)

        if _changed(session, result.session):
            await self.sessions.save(result.session)
        else:
            logger.debug(f"[Turn] Session for {phone_number} unchanged, skipping save")


def _changed(before: Session, after: Session) -> bool:
    return before.to_backend() != after.to_backend()
