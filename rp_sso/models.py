from pydantic import BaseModel, ConfigDict
from typing import Optional


class IdentityClaim(BaseModel):
    """A user the identity provider vouched for in a signed payload."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    avatar_url: Optional[str] = None


class SsoStatus(BaseModel):
    available: bool
