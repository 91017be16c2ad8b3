from fastapi import Header, HTTPException
from kudifi.settings import settings


def require_admin_key(x_api_key: str = Header(default="", alias="x-api-key")):
    """
    Admin endpoints are open when ADMIN_API_KEY is empty (local runs);
    otherwise the x-api-key header must match.
    """
    if not getattr(settings, "ADMIN_API_KEY", ""):
        return
    if x_api_key != settings.ADMIN_API_KEY:
        raise HTTPException(status_code=401, detail="Invalid API key")
