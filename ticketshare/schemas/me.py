from pydantic import BaseModel


class MeOut(BaseModel):
    user_id: str
    session_id: str
    role: str
    verification_level: str
