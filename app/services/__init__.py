from app.services.agent_event_ledger import AgentEventLedger
from app.services.agent_run_service import AgentRunService
from app.services.messaging_window_service import MessagingWindowService
from app.services.onboarding_service import OnboardingService
from app.services.persistence_gateway import PersistenceGateway
from app.services.session_manager import SessionManager
from app.services.session_message_service import SessionMessageService
from app.services.session_service import SessionService
from app.services.user_service import UserService

__all__ = [
    "AgentEventLedger",
    "AgentRunService",
    "MessagingWindowService",
    "OnboardingService",
    "PersistenceGateway",
    "SessionManager",
    "SessionMessageService",
    "SessionService",
    "UserService",
]
