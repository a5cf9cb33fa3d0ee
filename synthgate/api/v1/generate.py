"""Generation endpoints: single task and batch."""

import base64

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse, Response

from synthgate.core.dependencies import get_gateway
from synthgate.gateway.errors import ErrorClass, GatewayError
from synthgate.gateway.gateway import GenerationGateway
from synthgate.gateway.types import GenerationResult, ResultStatus
from synthgate.schemas.gateway import (
    BatchGenerateRequest,
    BatchGenerateResponse,
    ErrorOut,
    GenerateRequest,
    GenerateResultOut,
)

router = APIRouter(prefix="/generate", tags=["generate"])

_HTTP_STATUS: dict[ErrorClass, int] = {
    ErrorClass.RATE_LIMITED: 429,
    ErrorClass.QUOTA_EXCEEDED: 429,
    ErrorClass.UNAUTHORIZED: 502,
    ErrorClass.SERVER_ERROR: 502,
    ErrorClass.NETWORK_ERROR: 504,
    ErrorClass.NO_CREDENTIAL: 503,
    ErrorClass.UNKNOWN: 500,
}

# Gemini TTS returns raw 16-bit PCM at 24 kHz; ElevenLabs returns MP3
_AUDIO_MEDIA_TYPES = {
    "gemini": "audio/L16;rate=24000;channels=1",
    "elevenlabs": "audio/mpeg",
}


def _error_out(error: GatewayError | None) -> ErrorOut | None:
    return ErrorOut(**error.to_dict()) if error is not None else None


def _result_out(result: GenerationResult, include_audio: bool = False) -> GenerateResultOut:
    out = GenerateResultOut(
        task_id=result.task_id,
        status=result.status.value,
        attempts=result.attempts,
        from_cache=result.from_cache,
        credential_id=result.credential_id,
        latency_ms=result.latency_ms,
        error=_error_out(result.error),
    )
    if isinstance(result.data, str):
        out.text = result.data
    elif isinstance(result.data, bytes) and include_audio:
        out.audio_base64 = base64.b64encode(result.data).decode("ascii")
    return out


@router.post("")
async def generate(body: GenerateRequest, gateway: GenerationGateway = Depends(get_gateway)):
    """Run one task. Audio comes back as raw bytes, text as JSON."""
    result = await gateway.submit(body.to_task(), mode=body.mode, reassembly=body.reassembly)

    if result.status == ResultStatus.FAILED:
        error = result.error
        headers = {"Retry-After": str(int(error.retry_after) + 1)} if error.retry_after else None
        raise HTTPException(
            status_code=_HTTP_STATUS.get(error.error_class, 500),
            detail=error.to_dict(),
            headers=headers,
        )

    if result.status == ResultStatus.SKIPPED:
        return Response(status_code=204, headers={"X-Task-Id": result.task_id})

    if isinstance(result.data, bytes):
        return Response(
            content=result.data,
            media_type=_AUDIO_MEDIA_TYPES.get(gateway.settings.provider, "application/octet-stream"),
            headers={
                "X-Task-Id": result.task_id,
                "X-From-Cache": str(result.from_cache).lower(),
                "X-Attempts": str(result.attempts),
            },
        )

    return JSONResponse(content=_result_out(result).model_dump())


@router.post("/batch", response_model=BatchGenerateResponse)
async def generate_batch(body: BatchGenerateRequest, gateway: GenerationGateway = Depends(get_gateway)):
    """Run a batch. Results are keyed by task id; audio is base64-encoded."""
    tasks = [item.to_task() for item in body.tasks]
    try:
        results = await gateway.submit_batch_results(tasks, mode=body.mode)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    items = [_result_out(results[task.task_id], include_audio=True) for task in tasks]
    return BatchGenerateResponse(
        items=items,
        total=len(items),
        succeeded=sum(1 for r in results.values() if r.status == ResultStatus.SUCCESS),
    )
