"""Provider Adapters: protocol-level handling for each generation vendor.

Each adapter turns a GenerationPayload into the vendor's HTTP call and returns
the raw result: audio bytes or generated text. Any non-result raises
``ProviderError`` carrying the HTTP status, the vendor's status string and a
retry hint when one is present; transport failures propagate as httpx errors.
Classification into the gateway's failure taxonomy happens in the orchestrator.

Vendor-specific behaviors:
  - Gemini: generateContent; TTS via responseModalities AUDIO, base64 PCM in
    inlineData; retry hint in error.details[].retryDelay; SAFETY finish reason
  - ElevenLabs: text-to-speech endpoint returning MP3 bytes; audio only;
    quota exhaustion is reported as 401 with detail.status "quota_exceeded"
"""

from __future__ import annotations

import base64
import logging
from abc import ABC, abstractmethod

import httpx

from synthgate.gateway.errors import ProviderError, parse_retry_delay
from synthgate.gateway.text import sanitize_speech_text
from synthgate.gateway.types import GenerationKind, GenerationPayload, ResultData

logger = logging.getLogger(__name__)


class BaseProviderAdapter(ABC):
    """Base class for all provider adapters. One instance per credential."""

    provider: str

    def __init__(
        self,
        api_key: str,
        timeout: float = 60.0,
        speech_model: str = "",
        text_model: str = "",
        default_voice: str = "",
    ):
        self.api_key = api_key
        self.timeout = timeout
        self.speech_model = speech_model
        self.text_model = text_model
        self.default_voice = default_voice

    @abstractmethod
    async def generate(self, payload: GenerationPayload) -> ResultData:
        """Perform one provider call and return its raw result."""
        ...

    @staticmethod
    def _retry_after(resp: httpx.Response) -> float | None:
        header = resp.headers.get("retry-after")
        if header:
            try:
                return float(header)
            except ValueError:
                pass
        return parse_retry_delay(resp.text)


# ---------------------------------------------------------------------------
# Gemini Adapter (Google AI)
# ---------------------------------------------------------------------------


class GeminiAdapter(BaseProviderAdapter):
    """Google Gemini adapter for speech and text generation."""

    provider = "gemini"
    api_url_template = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    async def generate(self, payload: GenerationPayload) -> ResultData:
        if payload.kind == GenerationKind.AUDIO:
            model = payload.model or self.speech_model
            body = {
                "contents": [{"parts": [{"text": sanitize_speech_text(payload.content)}]}],
                "generationConfig": {
                    "responseModalities": ["AUDIO"],
                    "speechConfig": {
                        "voiceConfig": {
                            "prebuiltVoiceConfig": {"voiceName": payload.voice or self.default_voice},
                        },
                    },
                },
            }
        else:
            model = payload.model or self.text_model
            body = {
                "contents": [{"role": "user", "parts": [{"text": payload.content}]}],
                "generationConfig": dict(payload.params),
            }

        # Key goes in a header so it never appears in a logged URL
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                self.api_url_template.format(model=model),
                json=body,
                headers={
                    "x-goog-api-key": self.api_key,
                    "Content-Type": "application/json",
                },
            )

        if resp.status_code >= 400:
            raise self._error(resp)

        data = resp.json()
        candidates = data.get("candidates", [])
        if not candidates:
            block_reason = data.get("promptFeedback", {}).get("blockReason", "")
            raise ProviderError(
                f"Gemini returned no candidates{f' (blocked: {block_reason})' if block_reason else ''}",
                status_code=resp.status_code,
                error_code=f"BLOCKED_{block_reason}" if block_reason else "EMPTY_RESPONSE",
            )

        candidate = candidates[0]
        if candidate.get("finishReason") == "SAFETY":
            raise ProviderError("Gemini safety filter triggered", status_code=resp.status_code, error_code="SAFETY")

        parts = candidate.get("content", {}).get("parts", [])
        if payload.kind == GenerationKind.AUDIO:
            for part in parts:
                inline = part.get("inlineData") or {}
                if inline.get("data"):
                    return base64.b64decode(inline["data"])
            raise ProviderError("No audio data in Gemini response", status_code=resp.status_code, error_code="EMPTY_RESPONSE")

        text = "".join(p.get("text", "") for p in parts if "text" in p)
        if not text:
            raise ProviderError("No text in Gemini response", status_code=resp.status_code, error_code="EMPTY_RESPONSE")
        return text

    def _error(self, resp: httpx.Response) -> ProviderError:
        message = f"Gemini HTTP {resp.status_code}"
        code = ""
        try:
            error = resp.json().get("error", {})
            message = error.get("message") or message
            code = error.get("status", "")
        except ValueError:
            pass
        return ProviderError(
            message,
            status_code=resp.status_code,
            error_code=code,
            retry_after=self._retry_after(resp),
            body=resp.text,
        )


# ---------------------------------------------------------------------------
# ElevenLabs Adapter
# ---------------------------------------------------------------------------


class ElevenLabsAdapter(BaseProviderAdapter):
    """ElevenLabs text-to-speech adapter (audio only)."""

    provider = "elevenlabs"
    api_url_template = "https://api.elevenlabs.io/v1/text-to-speech/{voice}"
    default_model_id = "eleven_multilingual_v2"

    async def generate(self, payload: GenerationPayload) -> ResultData:
        if payload.kind != GenerationKind.AUDIO:
            raise ProviderError("ElevenLabs only supports audio generation", error_code="UNSUPPORTED")

        body = {
            "text": sanitize_speech_text(payload.content),
            "model_id": payload.model or self.speech_model or self.default_model_id,
        }
        if payload.params:
            body["voice_settings"] = dict(payload.params)

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                self.api_url_template.format(voice=payload.voice or self.default_voice),
                json=body,
                params={"output_format": "mp3_44100_128"},
                headers={
                    "xi-api-key": self.api_key,
                    "Content-Type": "application/json",
                    "Accept": "audio/mpeg",
                },
            )

        if resp.status_code >= 400:
            raise self._error(resp)

        if not resp.content:
            raise ProviderError("Empty audio from ElevenLabs", status_code=resp.status_code, error_code="EMPTY_RESPONSE")
        return resp.content

    def _error(self, resp: httpx.Response) -> ProviderError:
        message = f"ElevenLabs HTTP {resp.status_code}"
        code = ""
        try:
            detail = resp.json().get("detail", {})
            if isinstance(detail, dict):
                message = detail.get("message") or message
                code = detail.get("status", "")
            elif isinstance(detail, str):
                message = detail
        except ValueError:
            pass

        status = resp.status_code
        if code == "quota_exceeded":
            # Reported as 401 by the vendor, but it is not a bad key
            status, code = 402, "QUOTA_EXCEEDED"
        return ProviderError(
            message,
            status_code=status,
            error_code=code,
            retry_after=self._retry_after(resp),
            body=resp.text,
        )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

ADAPTER_REGISTRY: dict[str, type[BaseProviderAdapter]] = {
    GeminiAdapter.provider: GeminiAdapter,
    ElevenLabsAdapter.provider: ElevenLabsAdapter,
}


def get_adapter(provider: str, api_key: str, **kwargs) -> BaseProviderAdapter:
    """Factory: get the appropriate adapter for a provider."""
    cls = ADAPTER_REGISTRY.get(provider)
    if cls is None:
        raise ValueError(f"No adapter registered for provider: {provider}")
    return cls(api_key=api_key, **kwargs)
