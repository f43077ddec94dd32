from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from courtchat.core.exceptions import AuthenticationError, TokenInvalidError
from courtchat.core.security import verify_access_token
from courtchat.database import get_db
from courtchat.realtime.hub import RealtimeHub
from courtchat.schemas.user import ChatUser
from courtchat.services import user_service

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ChatUser:
    if credentials is None:
        raise AuthenticationError()

    user_id = verify_access_token(credentials.credentials)

    user = await user_service.get_user_by_id(db, user_id)
    if user is None:
        raise TokenInvalidError()

    return ChatUser.model_validate(user)


def get_hub(request: Request) -> RealtimeHub:
    return request.app.state.hub
