"""Exception hierarchy of the voice runtime.

Nothing here is process-fatal: every error is caught at the orchestrator
boundary and the worst outcome is returning to ``idle`` with the wake word
re-armed.
"""

from __future__ import annotations


class JarvisError(Exception):
    """Base class for all voice runtime errors."""


class CapabilityUnavailableError(JarvisError):
    """A speech capability (recognition, synthesis, microphone) is missing."""


class RecognizerBusyError(JarvisError):
    """The recognizer was asked to start while already started."""


class RemoteServiceError(JarvisError):
    """The assistant server could not be reached or answered with an error."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DispatchError(RemoteServiceError):
    """A command round-trip failed; ``text`` keeps the input for a retry."""

    def __init__(self, message: str, *, text: str, status_code: int | None = None) -> None:
        super().__init__(message, status_code=status_code)
        self.text = text


class ChannelNotConnectedError(RemoteServiceError):
    """The realtime channel is not connected."""


class SpeechError(JarvisError):
    """Base class for playback outcomes other than a normal completion."""


class SpeechCancelledError(SpeechError):
    """Playback was interrupted by a user stop request."""

    def __init__(self, message: str = "Speech interrupted by user") -> None:
        super().__init__(message)


class SpeechPlaybackError(SpeechError):
    """The speech backend failed while producing audio."""
