"""
Service container: every shared collaborator, built once per app.

Adapters receive the ApiClient explicitly; nothing is reachable through
module globals.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from pharmabot.agent.dialogue_engine import DialogueEngine
from pharmabot.core.config import Settings
from pharmabot.core.user_locks import UserLockRegistry
from pharmabot.db.init_db import init_db
from pharmabot.db.session import build_engine, build_session_factory
from pharmabot.services.api_client import ApiClient
from pharmabot.services.catalog import CatalogService
from pharmabot.services.customers import CustomerService
from pharmabot.services.orders import OrderService
from pharmabot.services.pharmacies import PharmacyService
from pharmabot.services.prescriptions import PrescriptionStore
from pharmabot.services.session_store import LocalSessionMirror, SessionStore
from pharmabot.whatsapp.client import WhatsAppClient
from pharmabot.whatsapp.handlers import MessageHandler

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    api: ApiClient
    catalog: CatalogService
    sessions: SessionStore
    whatsapp: WhatsAppClient
    handler: MessageHandler
    db_engine: Optional[Engine] = None

    async def aclose(self):
        await self.api.aclose()
        if self.db_engine is not None:
            self.db_engine.dispose()


def build_container(settings: Settings) -> ServiceContainer:
    api = ApiClient(
        settings.BACKEND_BASE_URL,
        timeout=settings.REQUEST_TIMEOUT_SECONDS,
        max_retries=settings.MAX_RETRIES,
        backoff=settings.RETRY_BACKOFF_SECONDS,
        auth_token=settings.BACKEND_AUTH_TOKEN,
    )

    db_engine = build_engine(settings.FALLBACK_DATABASE_URL)
    init_db(db_engine)
    sessions = SessionStore(api, LocalSessionMirror(build_session_factory(db_engine)))

    catalog = CatalogService(api)
    pharmacies = PharmacyService(api)
    whatsapp = WhatsAppClient(api, settings)
    engine = DialogueEngine(
        catalog=catalog,
        customers=CustomerService(api),
        pharmacies=pharmacies,
        orders=OrderService(api, pharmacies),
        media=whatsapp,
        prescriptions=PrescriptionStore(settings.MEDIA_ROOT),
    )
    locks = UserLockRegistry() if settings.SERIALIZE_PER_USER else None
    handler = MessageHandler(sessions, engine, whatsapp, locks=locks)

    logger.info(f"[Container] Backend at {settings.BACKEND_BASE_URL}, per-user serialization={locks is not None}")
    return ServiceContainer(
        settings=settings,
        api=api,
        catalog=catalog,
        sessions=sessions,
        whatsapp=whatsapp,
        handler=handler,
        db_engine=db_engine,
    )
