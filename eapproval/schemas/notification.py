from typing import Optional
from pydantic import BaseModel


class NotificationResponse(BaseModel):
    id: str
    request_id: Optional[str] = None
    title: str
    body: str
    link: Optional[str] = None
    is_read: bool = False
    created_at: str


class DrainResponse(BaseModel):
    attempted: int
