"""Capability protocols between the runtime and the audio adapters.

Adapters may run their own threads; callbacks registered here are always
invoked on the event loop (adapters marshal with ``call_soon_threadsafe``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence


# Recognizer errors that only mean "nothing happened".
BENIGN_RECOGNIZER_ERRORS = frozenset({"no-speech", "aborted", "audio-capture"})


@dataclass(slots=True)
class RecognitionResult:
    """One recognition fragment."""

    text: str
    final: bool = False


@dataclass(slots=True)
class RecognizerCallbacks:
    on_start: Optional[Callable[[], None]] = None
    on_result: Optional[Callable[[RecognitionResult], None]] = None
    on_error: Optional[Callable[[str], None]] = None
    on_end: Optional[Callable[[], None]] = None


class Recognizer(Protocol):
    """Continuous speech-to-text source."""

    def bind(self, callbacks: RecognizerCallbacks) -> None: ...

    def start(self) -> None:
        """Begin a session; raises ``RecognizerBusyError`` when already started."""
        ...

    def stop(self) -> None:
        """Finish the session, flushing pending audio, then fire ``on_end``."""
        ...

    def abort(self) -> None:
        """Drop the session without a final result, then fire ``on_end``."""
        ...


@dataclass(slots=True)
class SynthesisCallbacks:
    on_start: Optional[Callable[[], None]] = None
    on_end: Optional[Callable[[], None]] = None
    on_error: Optional[Callable[[str], None]] = None


class Synthesizer(Protocol):
    """One-shot text-to-speech output."""

    def speak(self, text: str, *, voice: str, rate: float, callbacks: SynthesisCallbacks) -> None: ...

    def cancel(self) -> None:
        """Interrupt the current utterance; ``on_end`` still fires once."""
        ...

    def voices(self) -> Sequence[str]: ...
