from fastapi import HTTPException, Security, Request
from fastapi.security import APIKeyHeader

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

def get_api_key(request: Request, api_key: str = Security(api_key_header)):
    """Validate API key from header if LIVEFEED_API_KEY is configured.
    If no expected key configured, allows open access (dev mode)."""
    settings = request.app.state.settings
    if settings.allow_unauth_local:
        return None
    expected = settings.api_key
    if not expected:
        return None  # open mode
    if not api_key or api_key != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return api_key
