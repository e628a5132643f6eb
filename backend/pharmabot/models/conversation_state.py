"""
Conversation State Model: local mirror of backend sessions.

WHY THIS EXISTS:
- The backend session endpoint is the source of truth, but it can be down
- Without a local copy, an outage mid-checkout would drop the user's cart
- Conversation continuity is critical for multi-step flows

Written on every save; read only when the backend read fails.
"""
from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.sql import func
from sqlalchemy.types import JSON

from pharmabot.db.base import Base


class ConversationState(Base):
    """
    Mirrors one WhatsApp session per phone number.

    Schema:
        phone_number: Sender id (unique)
        current_step: Dialogue step (e.g., "browse_medicines", "awaiting_delivery_details")
        context_data: JSON blob (cart, delivery address, pending prescription, ...)
        is_fallback: True when the last save did not reach the backend
        updated_at: Last activity timestamp
    """
    __tablename__ = "conversation_states"

    id = Column(Integer, primary_key=True, index=True)
    phone_number = Column(String(32), unique=True, nullable=False, index=True)
    current_step = Column(String(64), nullable=False, default="start")
    context_data = Column(JSON, nullable=True, default=dict)
    is_fallback = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<ConversationState phone={self.phone_number} step={self.current_step} fallback={self.is_fallback}>"
