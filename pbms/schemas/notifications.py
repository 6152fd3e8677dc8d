import uuid
from typing import Literal, Optional

from pydantic import BaseModel, Field

from ..services.roles import Role


NotificationType = Literal["info", "success", "warning", "error"]


class NotificationCreate(BaseModel):
    user_id: uuid.UUID
    title: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=1000)
    type: NotificationType = "info"
    action_url: Optional[str] = None


class NotificationBroadcast(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=1000)
    type: NotificationType = "info"
    action_url: Optional[str] = None
    role: Optional[Role] = None
