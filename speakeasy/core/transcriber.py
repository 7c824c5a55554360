"""
SpeakEasy Assistant — Audio Transcriber.

Voice is the fastest capture method — speaking is faster than typing.
After transcription, text flows into the same parser as typed utterances.

OpenAI Whisper is used here exclusively for speech-to-text. The recording is
an opaque blob; this module never inspects or re-encodes it.
"""

from __future__ import annotations

import logging

from openai import AsyncOpenAI

from speakeasy.config import settings

logger = logging.getLogger(__name__)

# Whisper rejects uploads above 25 MB.
MAX_AUDIO_BYTES = 25 * 1024 * 1024

_client: AsyncOpenAI | None = None


class TranscriptionError(Exception):
    """Raised when audio cannot be turned into text. Nothing gets created."""


def _get_client() -> AsyncOpenAI:
    global _client
    if _client is None:
        _client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
    return _client


async def transcribe_audio(audio: bytes, filename: str = "audio.ogg") -> str:
    """Transcribe a recorded audio blob using OpenAI Whisper.

    Args:
        audio: Raw bytes of the recording (OGG, WEBM, MP3, etc.).
        filename: Name hint for the container format.

    Returns:
        Transcribed text string (never empty).

    Raises:
        TranscriptionError: On empty/oversized audio, API failure, or an
            unintelligible recording that yields no text.
    """
    if not audio:
        raise TranscriptionError("No audio recorded")
    if len(audio) > MAX_AUDIO_BYTES:
        raise TranscriptionError("Recording too large. Maximum size is 25MB.")

    try:
        response = await _get_client().audio.transcriptions.create(
            model="whisper-1",
            file=(filename, audio),
            language=settings.TRANSCRIPTION_LANGUAGE,
            temperature=0.1,
        )
    except Exception as exc:
        logger.error("Whisper transcription failed for %s: %s", filename, exc)
        raise TranscriptionError(f"Failed to transcribe audio: {exc}") from exc

    text = (response.text or "").strip()
    if not text:
        logger.error("Whisper returned no text for %s (%d bytes)", filename, len(audio))
        raise TranscriptionError("Could not understand the recording")

    logger.info("Transcribed %d chars from %s", len(text), filename)
    return text
