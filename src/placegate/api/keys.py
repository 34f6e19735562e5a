from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel

from placegate.core.errors import StorageFailure, ValidationError
from placegate.deps.signed_request import require_signed_request

router = APIRouter(tags=["keys"])


class ApiKeyCreateOut(BaseModel):
    apiKey: str
    expiresAt: datetime
    message: str


@router.post("/generate-api-key", response_model=ApiKeyCreateOut, status_code=status.HTTP_201_CREATED)
async def generate_api_key(request: Request, body: Any = Depends(require_signed_request)):
    name = body.get("name") if isinstance(body, dict) else None

    try:
        record = await request.app.state.issuer.issue(name)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.detail)
    except StorageFailure:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="API key generation failed",
        )

    return ApiKeyCreateOut(
        apiKey=record.key,
        expiresAt=record.expires_at,
        message=f"API key generated for {record.name}.",
    )
