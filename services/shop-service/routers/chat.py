"""Chat assistant API router."""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from auth import CurrentUser, get_current_user
from database import get_db
from dependencies import get_chat_service
from errors import UpstreamServiceError
from schemas import ChatHistoryResponse, ChatMessageRequest, ChatReplyResponse
from services.chat_service import ChatService

router = APIRouter(prefix="/api/chat", tags=["chat"])


@router.post("/message", response_model=ChatReplyResponse)
async def send_message(
    request: ChatMessageRequest,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    try:
        return await chat_service.send_message(db, user.id, request.message)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UpstreamServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.get("/history", response_model=ChatHistoryResponse)
async def get_history(
    page: int = 1,
    limit: int = 50,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    chat_service: ChatService = Depends(get_chat_service)
):
    return chat_service.get_history(db, user.id, page=page, limit=limit)
