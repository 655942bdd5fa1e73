from pydantic import BaseModel, ConfigDict


class Identity(BaseModel):
    """Caller resolved from a bearer token; never persisted by the chat."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    is_admin: bool = False
