# payflow/schemas/token.py
from typing import Optional
from pydantic import BaseModel


class TokenPayload(BaseModel):
    sub: str
    role: Optional[str] = None
