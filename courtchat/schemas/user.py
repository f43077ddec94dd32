from uuid import UUID

from pydantic import BaseModel


class ChatUser(BaseModel):
    """Display identity of a conversation participant"""

    id: UUID
    name: str
    city: str | None = None
    bio: str | None = None

    model_config = {"from_attributes": True}


class TokenPayload(BaseModel):
    sub: str
    exp: int
