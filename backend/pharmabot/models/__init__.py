from pharmabot.models.conversation_state import ConversationState

__all__ = ["ConversationState"]
