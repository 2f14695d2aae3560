from dataclasses import dataclass
from secrets import compare_digest

from fastapi import Depends, HTTPException, Request, status

from app.core.config import Settings, get_settings

OPS_TOKEN_HEADER = "X-Ops-Token"


@dataclass
class OpsTokenIdentity:
    """Caller that presented the shared ops token."""

    source: str = "static_token"


async def require_ops_token(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> OpsTokenIdentity:
    provided = request.headers.get(OPS_TOKEN_HEADER, "").strip()
    if not provided:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    expected = settings.ops_internal_token.strip()
    if not expected or not compare_digest(provided, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    identity = OpsTokenIdentity()
    request.state.ops_identity = identity
    return identity
