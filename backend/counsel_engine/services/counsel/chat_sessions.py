"""
Chat Session Service

Opens the messaging thread between a requester and the counselor who won
the claim. Called once per successful claim, after the claim has committed.
Callers treat it as best-effort: a failure here never undoes a claim.
"""
import logging
from typing import Optional, Protocol
from uuid import uuid4

from sqlalchemy.orm import Session

from ...models.db_models import ChatSessionDB, ChatSessionStatus, utcnow

logger = logging.getLogger(__name__)


class ChatSessionCreator(Protocol):
    def create_chat_session(
        self,
        request_id: Optional[str],
        appointment_id: Optional[str],
        user_id: str,
        user_name: str,
        counselor_id: str,
        counselor_name: str,
    ) -> str:
        ...


class ChatSessionService:
    """Stores chat sessions next to the requests they belong to."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def create_chat_session(
        self,
        request_id: Optional[str],
        appointment_id: Optional[str],
        user_id: str,
        user_name: str,
        counselor_id: str,
        counselor_name: str,
    ) -> str:
        """
        Create an active chat session and return its id.

        One session per request: a second call for the same request returns
        the existing session. Database errors propagate to the caller.
        """
        if request_id:
            existing = self.db.query(ChatSessionDB).filter(
                ChatSessionDB.request_id == request_id
            ).first()
            if existing:
                return existing.id

        now = utcnow()
        chat = ChatSessionDB(
            id=str(uuid4()),
            request_id=request_id,
            appointment_id=appointment_id,
            user_id=user_id,
            user_name=user_name,
            counselor_id=counselor_id,
            counselor_name=counselor_name,
            status=ChatSessionStatus.ACTIVE,
            unread_count_user=0,
            unread_count_counselor=0,
            created_at=now,
            updated_at=now,
        )
        chat_id = chat.id
        self.db.add(chat)
        self.db.commit()

        logger.info(f"Chat session {chat_id} opened between {user_name} and {counselor_name}")
        return chat_id

    def get_for_request(self, request_id: str) -> Optional[ChatSessionDB]:
        return self.db.query(ChatSessionDB).filter(ChatSessionDB.request_id == request_id).first()
