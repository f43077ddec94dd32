from fastapi import APIRouter

from courtchat.api.v1.endpoints import chat

router = APIRouter()

router.include_router(chat.router, prefix="/chat")
