"""Shared test payloads and a scripted transcription engine."""

from diary_media.services.transcription import TranscriptResult

# Leading bytes of real files, padded to the requested size by ``make_payload``
WEBM_HEADER = b"\x1a\x45\xdf\xa3\x9f\x42\x86\x81\x01\x42\xf7\x81\x01"
PNG_HEADER = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR"


def make_payload(header: bytes, size: int) -> bytes:
    return (header + b"\x00" * size)[:size]


HELLO_WORLD = TranscriptResult(
    text="hello world", duration_seconds=4, language="en", confidence=92
)


class StubEngine:
    """
    Scripted transcription engine.

    Each call consumes the next outcome; the last one repeats. An outcome is
    either a TranscriptResult to return or an exception to raise.
    """

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0
        self.received: list[bytes] = []

    async def transcribe(self, audio, filename="audio.webm"):
        self.calls += 1
        self.received.append(audio.read())
        outcome = self.outcomes[min(self.calls, len(self.outcomes)) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome
