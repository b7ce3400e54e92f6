"""Chat assistant bridge."""
import logging
from typing import Any, Dict, List, Optional
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from opentelemetry import trace

from config import CHAT_HISTORY_SIZE
from errors import BusinessRuleError, UpstreamServiceError
from models import ChatMessage, Product
from monitoring import chat_failures_counter
from pagination import normalize_paging, page_info
from services.external_service import ChatCompletionClient

logger = logging.getLogger(__name__)

MAX_RECOMMENDATIONS = 5


class ChatService:
    """Persists chat turns and asks the AI provider for replies."""

    def __init__(self, completion_client: ChatCompletionClient, history_size: int = CHAT_HISTORY_SIZE):
        self.completion_client = completion_client
        self.history_size = history_size
        self.tracer = trace.get_tracer(__name__)

    def _history(self, db: Session, user_id: str) -> List[Dict[str, str]]:
        recent = (
            db.query(ChatMessage)
            .filter(ChatMessage.user_id == user_id)
            .order_by(ChatMessage.created_at.desc())
            .limit(self.history_size)
            .all()
        )
        return [
            {"role": "user" if m.is_user else "assistant", "content": m.message}
            for m in reversed(recent)
        ]

    def recommend_products(self, db: Session, text: str) -> List[Dict[str, Any]]:
        """Active products whose name or description contains the message text."""
        pattern = f"%{text.lower()}%"
        try:
            products = (
                db.query(Product)
                .filter(
                    Product.is_active.is_(True),
                    or_(Product.name.ilike(pattern), Product.description.ilike(pattern))
                )
                .limit(MAX_RECOMMENDATIONS)
                .all()
            )
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Product recommendation failed", extra={"error": str(e)})
            return []
        return [
            {"id": p.id, "name": p.name, "price": float(p.price), "images": p.images or []}
            for p in products
        ]

    async def send_message(self, db: Session, user_id: str, text: Optional[str]) -> Dict[str, Any]:
        """
        Handle one user chat message.

        The user message is committed before the provider is called, so it
        stays in the history even when the call fails.

        Args:
            db: Database session
            user_id: Sender
            text: Message text

        Returns:
            Reply text, recommendations and the stored reply id

        Raises:
            BusinessRuleError: If the message is empty
            UpstreamServiceError: If the provider fails or times out
        """
        message = (text or "").strip()
        if not message:
            raise BusinessRuleError("Message cannot be empty")

        history = self._history(db, user_id)

        db.add(ChatMessage(user_id=user_id, message=message, is_user=True))
        db.commit()

        with self.tracer.start_as_current_span("ai.completion") as span:
            span.set_attribute("ai.provider", self.completion_client.provider)
            span.set_attribute("chat.history_size", len(history))
            try:
                reply = await self.completion_client.complete(history, message)
            except UpstreamServiceError as e:
                chat_failures_counter.add(1, {"provider": self.completion_client.provider})
                logger.error("Chat completion failed", extra={"user_id": user_id, "error": str(e)})
                raise

        recommendations = self.recommend_products(db, message)

        assistant_message = ChatMessage(
            user_id=user_id,
            message=reply,
            is_user=False,
            message_metadata={"recommendations": recommendations}
        )
        db.add(assistant_message)
        db.commit()

        logger.info("Chat reply stored", extra={
            "user_id": user_id,
            "message_id": assistant_message.id,
            "recommendations": len(recommendations)
        })
        return {
            "message": reply,
            "recommendations": recommendations,
            "message_id": assistant_message.id
        }

    def get_history(self, db: Session, user_id: str, page: int = 1, limit: int = 50) -> Dict[str, Any]:
        """A page of the user's chat log, oldest first."""
        page, limit = normalize_paging(page, limit, default_limit=50)
        query = db.query(ChatMessage).filter(ChatMessage.user_id == user_id)
        total = query.count()
        messages = (
            query.order_by(ChatMessage.created_at.asc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {"messages": messages, "pagination": page_info(page, limit, total)}
