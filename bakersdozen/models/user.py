"""
User profile row (joined auth record + `users` profile table).
"""
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

Role = Literal["admin", "user"]


class User(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    email: str = ""
    role: Role = "user"
    created_at: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def __repr__(self):
        return f"<User(email='{self.email}', role='{self.role}')>"
