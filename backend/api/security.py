"""
API key dependency for endpoints that change source collections.
"""
import secrets
from typing import Optional

from fastapi import Header, HTTPException

from backend.core.config import get_settings


def require_api_key(x_api_key: Optional[str] = Header(None)) -> None:
    """Reject writes without the configured key. Open when STOCKFLOW_API_KEY is unset."""
    expected = get_settings().API_KEY
    if not expected:
        return
    if not x_api_key or not secrets.compare_digest(x_api_key, expected):
        raise HTTPException(status_code=401, detail="Invalid API key")
