"""Gateway management endpoints: pool status, credentials, usage reset."""

import json

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from synthgate.core.dependencies import get_gateway
from synthgate.gateway.gateway import GenerationGateway
from synthgate.gateway.types import AddCredentialResult
from synthgate.schemas.gateway import (
    CredentialCreateRequest,
    CredentialCreateResponse,
    CredentialItem,
    CredentialListResponse,
    GatewayStatusResponse,
    MessageResponse,
)

router = APIRouter(prefix="/gateway", tags=["gateway"])


@router.get("/status", response_model=GatewayStatusResponse)
async def gateway_status(gateway: GenerationGateway = Depends(get_gateway)):
    """Pool, throttle and cache snapshot."""
    return GatewayStatusResponse(**gateway.get_stats())


@router.get("/status/stream")
async def gateway_status_stream(
    request: Request,
    limit: int | None = Query(None, ge=1, description="Stop after this many events"),
    gateway: GenerationGateway = Depends(get_gateway),
):
    """Server-sent events: one pool status snapshot per change, newest first on connect."""
    channel = gateway.status_channel()

    async def events():
        sent = 0
        try:
            async for status in channel.stream():
                if await request.is_disconnected():
                    break
                yield f"event: status\ndata: {json.dumps(status.to_dict())}\n\n"
                sent += 1
                if limit is not None and sent >= limit:
                    break
        finally:
            channel.close()

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/credentials", response_model=CredentialListResponse)
async def list_credentials(gateway: GenerationGateway = Depends(get_gateway)):
    """List credentials (masked)."""
    items = gateway.list_credentials()
    return CredentialListResponse(items=[CredentialItem(**item) for item in items], total=len(items))


@router.post("/credentials", response_model=CredentialCreateResponse, status_code=201)
async def add_credential(body: CredentialCreateRequest, gateway: GenerationGateway = Depends(get_gateway)):
    result = await gateway.pool.add_credential(body.secret)
    if result == AddCredentialResult.INVALID_FORMAT:
        raise HTTPException(status_code=422, detail="Credential has an invalid format")
    if result == AddCredentialResult.DUPLICATE:
        raise HTTPException(status_code=409, detail="Credential already exists")
    return CredentialCreateResponse(result=result, total=len(gateway.pool))


@router.delete("/credentials/{credential_id}", response_model=MessageResponse)
async def remove_credential(credential_id: str, gateway: GenerationGateway = Depends(get_gateway)):
    if not await gateway.remove_credential(credential_id):
        raise HTTPException(status_code=404, detail="Credential not found")
    return MessageResponse(message=f"Credential {credential_id} removed")


@router.post("/usage/reset", response_model=MessageResponse)
async def reset_usage(gateway: GenerationGateway = Depends(get_gateway)):
    """Zero usage counters and clear every cooldown."""
    await gateway.reset_usage()
    return MessageResponse(message="Usage reset")
