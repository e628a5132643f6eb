"""
Session Store: per-user conversation records.

Source of truth is the backend (/api/whatsapp-session/{phone}/). Every save
is also written to a local SQLAlchemy mirror so that a backend outage does
not drop the user's cart mid-flow:

    get()   backend GET (POST on 404)  -> on failure: mirror row, else fresh session
    save()  backend PATCH (POST on 404) -> mirror row always written

Sessions served from the mirror (or synthesized) are flagged is_fallback.
Mirror errors are logged and never break a turn.
"""
import asyncio
import logging
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from pharmabot.agent.conversation_state import ConversationStep
from pharmabot.core.exceptions import DecodeError, HttpError, RemoteServiceError, describe_for_log
from pharmabot.models.conversation_state import ConversationState
from pharmabot.schemas.session import Session
from pharmabot.services.api_client import ApiClient

logger = logging.getLogger(__name__)


class LocalSessionMirror:
    """Synchronous SQLAlchemy access to the conversation_states table."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def read(self, phone_number: str) -> Optional[Session]:
        db = self.session_factory()
        try:
            row = db.query(ConversationState).filter(ConversationState.phone_number == phone_number).first()
            if not row:
                return None
            return Session.model_validate({
                "phone_number": row.phone_number,
                "current_step": row.current_step,
                "context_data": row.context_data or {},
            })
        finally:
            db.close()

    def write(self, session: Session, is_fallback: bool):
        db = self.session_factory()
        try:
            row = db.query(ConversationState).filter(
                ConversationState.phone_number == session.phone_number
            ).first()
            if not row:
                row = ConversationState(phone_number=session.phone_number)
                db.add(row)
            backend = session.to_backend()
            row.current_step = backend["current_step"]
            row.context_data = backend["context_data"]
            row.is_fallback = is_fallback
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()


class SessionStore:
    def __init__(self, api: ApiClient, mirror: Optional[LocalSessionMirror] = None):
        self.api = api
        self.mirror = mirror

    @staticmethod
    def _endpoint(phone_number: str) -> str:
        return f"/api/whatsapp-session/{phone_number}/"

    async def get(self, phone_number: str) -> Session:
        """Load the session. Never raises for backend trouble; degrades instead."""
        try:
            session = await self._fetch(phone_number)
        except RemoteServiceError as e:
            logger.warning(f"[Session] Backend read failed for {phone_number}, using fallback: {describe_for_log(e)}")
            session = await self._mirror_read(phone_number) or Session(phone_number=phone_number)
            session.is_fallback = True
        return self.repair(session)

    async def save(self, session: Session) -> bool:
        """Persist to the backend and the mirror. Returns True when the backend accepted it."""
        saved = True
        try:
            await self._push(session)
            session.is_fallback = False
        except RemoteServiceError as e:
            saved = False
            session.is_fallback = True
            logger.warning(f"[Session] Backend write failed for {session.phone_number}, kept locally: {describe_for_log(e)}")
        await self._mirror_write(session, is_fallback=not saved)
        return saved

    @staticmethod
    def repair(session: Session) -> Session:
        """Reset a session whose step doesn't fit its context to main_menu, keeping the cart."""
        problems = session.inconsistencies()
        if not problems:
            return session
        logger.warning(f"[Session] Repairing {session.phone_number}: {'; '.join(problems)}")
        return session.model_copy(update={
            "current_step": ConversationStep.MAIN_MENU,
            "context_data": session.context_data.with_cart_only(),
        })

    async def _fetch(self, phone_number: str) -> Session:
        endpoint = self._endpoint(phone_number)
        try:
            data = await self.api.request(endpoint)
        except HttpError as e:
            if not e.is_not_found:
                raise
            logger.info(f"[Session] Creating session for {phone_number}")
            data = await self.api.request(endpoint, "POST", body={"current_step": "start", "context_data": {}})
        return self._parse(phone_number, data)

    async def _push(self, session: Session):
        endpoint = self._endpoint(session.phone_number)
        body = session.to_backend()
        try:
            await self.api.request(endpoint, "PATCH", body=body)
        except HttpError as e:
            if not e.is_not_found:
                raise
            # Record never reached the backend (created during an outage)
            await self.api.request(endpoint, "POST", body=body)

    @staticmethod
    def _parse(phone_number: str, data) -> Session:
        if not isinstance(data, dict):
            raise DecodeError(f"Session response for {phone_number} is not an object")
        try:
            return Session.model_validate({
                "phone_number": phone_number,
                "current_step": data.get("current_step"),
                "context_data": data.get("context_data"),
            })
        except ValidationError as e:
            raise DecodeError(f"Malformed session for {phone_number}: {e.error_count()} errors") from e

    async def _mirror_read(self, phone_number: str) -> Optional[Session]:
        if self.mirror is None:
            return None
        try:
            return await asyncio.to_thread(self.mirror.read, phone_number)
        except (SQLAlchemyError, ValidationError) as e:
            logger.error(f"[Session] Mirror read failed for {phone_number}: {e}")
            return None

    async def _mirror_write(self, session: Session, is_fallback: bool):
        if self.mirror is None:
            return
        try:
            await asyncio.to_thread(self.mirror.write, session, is_fallback)
        except SQLAlchemyError as e:
            logger.error(f"[Session] Mirror write failed for {session.phone_number}: {e}")
