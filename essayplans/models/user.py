from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


class User(BaseModel):
    """Subscription owner. Identity is supplied by the caller; only the back-reference is engine state."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    created_at: Optional[datetime] = None
    display_name: Optional[str] = None
    role: str = "student"
    status: str = "active"
    subscription_id: Optional[int] = None
