from typing import Literal
from pydantic import BaseModel


class UssdRequest(BaseModel):
    sessionId: str
    serviceCode: str = ""
    phoneNumber: str
    # Cumulative input, "*"-separated; empty on the first screen
    text: str = ""


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"
