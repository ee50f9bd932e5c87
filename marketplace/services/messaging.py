"""
Conversation unread counters consumed by the messaging UI.

Sending a message bumps unread_counts for every participant except the
sender; opening the conversation zeroes the reader's counter.
"""
import logging
from sqlalchemy.orm import Session, aliased

from marketplace.auth import Principal
from marketplace.errors import NotFoundError, PermissionDeniedError, ValidationError
from marketplace.models import Conversation, ConversationParticipant, Message, utcnow

logger = logging.getLogger(__name__)


class ConversationService:
    def __init__(self, db: Session):
        self.db = db

    def _load_for(self, conversation_id: str, actor: Principal) -> Conversation:
        conversation = self.db.get(Conversation, conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        if actor.user_id not in (conversation.participants or []):
            raise PermissionDeniedError("Not a participant in this conversation")
        return conversation

    def open(self, actor: Principal, other_user_id: str) -> Conversation:
        """Return the two-party conversation between actor and other, creating it if needed."""
        if not other_user_id or other_user_id == actor.user_id:
            raise ValidationError("A different participant is required")

        mine = aliased(ConversationParticipant)
        theirs = aliased(ConversationParticipant)
        existing = self.db.query(Conversation).join(
            mine, mine.conversation_id == Conversation.id
        ).join(
            theirs, theirs.conversation_id == Conversation.id
        ).filter(
            mine.user_id == actor.user_id,
            theirs.user_id == other_user_id,
        ).first()
        if existing is not None:
            return existing

        conversation = Conversation(
            participants=[actor.user_id, other_user_id],
            unread_counts={actor.user_id: 0, other_user_id: 0},
            members=[
                ConversationParticipant(user_id=actor.user_id),
                ConversationParticipant(user_id=other_user_id),
            ],
        )
        self.db.add(conversation)
        self.db.flush()
        logger.info(f"Conversation {conversation.id} opened between {actor.user_id} and {other_user_id}")
        return conversation

    def list_for_user(self, user_id: str) -> list[Conversation]:
        return self.db.query(Conversation).join(
            ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id
        ).filter(
            ConversationParticipant.user_id == user_id
        ).order_by(
            Conversation.last_message_at.desc(),
            Conversation.created_at.desc(),
        ).all()

    def send_message(self, conversation_id: str, actor: Principal, text: str) -> Message:
        if not text or not text.strip():
            raise ValidationError("Message text is required")
        conversation = self._load_for(conversation_id, actor)

        now = utcnow()
        message = Message(
            conversation_id=conversation.id,
            sender_id=actor.user_id,
            text=text.strip(),
            created_at=now,
        )
        self.db.add(message)

        counts = dict(conversation.unread_counts or {})
        for participant in conversation.participants:
            if participant != actor.user_id:
                counts[participant] = counts.get(participant, 0) + 1
        conversation.unread_counts = counts
        conversation.last_message = message.text
        conversation.last_message_at = now
        self.db.flush()
        return message

    def mark_read(self, conversation_id: str, actor: Principal) -> Conversation:
        conversation = self._load_for(conversation_id, actor)
        counts = dict(conversation.unread_counts or {})
        counts[actor.user_id] = 0
        conversation.unread_counts = counts
        self.db.flush()
        return conversation
