from app.models.agent_event import AgentEvent
from app.models.agent_run import AgentRun, AgentStep
from app.models.messaging_window import MessagingWindow
from app.models.session import Session
from app.models.session_message import SessionMessage
from app.models.user import User

__all__ = [
    "AgentEvent",
    "AgentRun",
    "AgentStep",
    "MessagingWindow",
    "Session",
    "SessionMessage",
    "User",
]
