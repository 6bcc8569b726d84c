"""Orchestrates wake word, capture, the assistant round-trip and speech output."""

from __future__ import annotations

import asyncio
import re
from typing import Any, Callable, Coroutine, Optional

from ..audio.base import Recognizer, Synthesizer
from ..audio.gain import MicrophoneGain
from ..config.settings import MAX_SPEECH_RATE, MIN_SPEECH_RATE, AppSettings, TTSMode
from ..core.config import Timings
from ..core.errors import DispatchError, JarvisError, SpeechCancelledError, SpeechError
from ..core.logger import get_logger
from ..core.trace import new_cycle_id
from ..services.api import JarvisAPI
from ..services.realtime import RealtimeChannel
from ..services.schemas import Message, PhaseComplete, PomodoroSync
from ..state.app_state import VOICE_TRANSITIONS, AppState, ChatMode, VoiceState, WakeWordState
from ..state.conversations import ConversationBook
from .conversation_timer import ConversationTimer
from .pomodoro import PomodoroPhase, PomodoroSession, PomodoroSnapshot
from .session import SpeechCaptureSession
from .speech import SpeechOutputController
from .wakeword import WakeWordDetector


logger = get_logger("voice")

StateCallback = Callable[[VoiceState], None]
MessageCallback = Callable[[Message], None]
ErrorCallback = Callable[[Exception], None]
TranscriptCallback = Callable[[str], None]
PomodoroCallback = Callable[[PomodoroSnapshot], None]

CONTINUE_WORDS = re.compile(r"\b(yes|continue|sure|start)\b")
DECLINE_WORDS = re.compile(r"\b(no|stop|cancel)\b")

CONTINUE_COMMAND = "continue pomodoro"
CONTINUE_PHRASE = "Starting your next Pomodoro session!"
DECLINE_PHRASE = "Pomodoro session ended. Great work!"
PROMPT_PHRASE = "Ready to continue your Pomodoro session? Say yes to continue or no to stop."
TEST_PHRASE = "Hello, this is a test of your selected voice settings."


class VoiceOrchestrator:
    """High-level coordinator for the voice assistant.

    The orchestrator is the only writer of :class:`AppState`. Capabilities
    report through callbacks and every delayed action is a loop timer that
    user stop and shutdown cancel.
    """

    def __init__(
        self,
        state: AppState,
        api: JarvisAPI,
        *,
        wake_recognizer: Recognizer | None = None,
        capture_recognizer: Recognizer | None = None,
        synthesizer: Synthesizer | None = None,
        channel: RealtimeChannel | None = None,
        conversations: ConversationBook | None = None,
        pomodoro: PomodoroSession | None = None,
        timings: Timings | None = None,
        save_settings: Callable[[AppSettings], None] | None = None,
        gain: MicrophoneGain | None = None,
    ) -> None:
        self.state = state
        self.api = api
        self.channel = channel
        self.synthesizer = synthesizer
        self.timings = timings or Timings()
        self.conversations = conversations or ConversationBook()
        self.pomodoro = pomodoro or PomodoroSession()
        self.gain = gain
        self._save_settings = save_settings

        self.speech = SpeechOutputController(
            lambda: self.state.settings.voice,
            api,
            synthesizer=synthesizer,
            channel=channel,
        )
        self.speech.bind(
            on_starting=self.on_playback_starting,
            on_finished=self.on_playback_finished,
            on_stopped=self.on_playback_stopped,
        )

        listening = state.settings.listening
        self.detector: WakeWordDetector | None = None
        if wake_recognizer is not None:
            self.detector = WakeWordDetector(
                wake_recognizer,
                listening.wake_words,
                on_detected=self.on_wake_detected,
                can_listen=self.can_listen,
                on_state=self._on_wake_state,
                timings=self.timings,
            )
            self.detector.set_enabled(listening.wake_word_enabled)

        self.capture: SpeechCaptureSession | None = None
        if capture_recognizer is not None:
            self.capture = SpeechCaptureSession(
                capture_recognizer,
                on_transcript=self._on_capture_transcript,
                on_no_speech=self._on_no_speech,
                on_activity=self._on_capture_activity,
                timings=self.timings,
            )

        self.timer = ConversationTimer(self.timings.conversation_window, self.on_conversation_timeout)
        self._resume_handle: Optional[asyncio.TimerHandle] = None
        self._conversation_handle: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False
        # bumped by every user cancel; replies of an older turn are not spoken
        self._turn = 0
        self._pomodoro_phase = self.pomodoro.phase

        self.pomodoro.on_phase_complete = self._on_local_phase_complete
        self.pomodoro.on_change = self._on_pomodoro_change
        if channel is not None:
            channel.on("pomodoro_sync", self._on_pomodoro_sync)
            channel.on("pomodoro_phase_complete", self._on_pomodoro_phase_complete)
            channel.on("pomodoro_command", self._on_pomodoro_command)
            channel.on_status(self._on_server_status)

        self._state_callback: Optional[StateCallback] = None
        self._message_callback: Optional[MessageCallback] = None
        self._error_callback: Optional[ErrorCallback] = None
        self._transcript_callback: Optional[TranscriptCallback] = None
        self._pomodoro_callback: Optional[PomodoroCallback] = None

    # ------------------------------------------------------------------ #
    # Wiring
    # ------------------------------------------------------------------ #
    def attach(
        self,
        *,
        on_state: Optional[StateCallback] = None,
        on_message: Optional[MessageCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_transcript: Optional[TranscriptCallback] = None,
        on_pomodoro: Optional[PomodoroCallback] = None,
    ) -> None:
        """Register presentation callbacks."""
        self._state_callback = on_state
        self._message_callback = on_message
        self._error_callback = on_error
        self._transcript_callback = on_transcript
        self._pomodoro_callback = on_pomodoro

    def start(self) -> None:
        """Restore persisted state, connect the channel and arm the wake word."""
        self.conversations.load()
        self.pomodoro.restore()
        if self.channel is not None:
            self.channel.start()
        self._spawn(self.load_voices())
        if self.detector is not None and self._wake_allowed():
            self.detector.start()

    def can_listen(self) -> bool:
        """True when the wake word detector may hold the microphone."""
        capture_active = self.capture is not None and self.capture.active
        return (
            self.state.voice_state is VoiceState.IDLE
            and not capture_active
            and not self.speech.speaking
            and self._wake_allowed()
        )

    # ------------------------------------------------------------------ #
    # Voice pipeline events
    # ------------------------------------------------------------------ #
    def on_wake_detected(self) -> None:
        cycle = new_cycle_id()
        if self.capture is not None and self.capture.active:
            logger.info("wake phrase ignored, capture already active")
            return
        if self.state.voice_state in (VoiceState.PROCESSING, VoiceState.SPEAKING):
            logger.info("wake phrase ignored while %s", self.state.voice_state.value)
            return
        if self.state.chat_mode is ChatMode.CHAT:
            logger.info("wake phrase ignored in chat mode")
            return
        logger.info("wake cycle %s started", cycle)
        self._cancel_pending()
        if self.detector is not None:
            self.detector.stop()
        self._open_capture(auto_stop=True)

    async def on_transcript_final(self, text: str, *, voice: bool = True) -> Optional[Message]:
        """Dispatch a final user utterance; returns the assistant reply.

        Raises :class:`DispatchError` (carrying ``text``) when the round-trip
        fails.
        """
        text = text.strip()
        if not text:
            return None
        if self.state.voice_state in (VoiceState.PROCESSING, VoiceState.SPEAKING):
            logger.info("transcript dropped while %s", self.state.voice_state.value)
            return None
        self.timer.cancel()

        if voice and self.state.awaiting_pomodoro_confirmation:
            if await self._handle_confirmation(text):
                return None

        history = self.conversations.current_messages()
        user_message = Message(role="user", content=text)
        self.conversations.add_message(user_message)
        self._emit_message(user_message)
        if voice:
            self._set_voice_state(VoiceState.PROCESSING)
        turn = self._turn

        try:
            result = await self.api.send_command(text, history)
        except DispatchError as exc:
            logger.error("dispatch failed: %s", exc)
            if voice and self._is_current(turn):
                self._set_voice_state(VoiceState.IDLE, force=True)
                self._schedule_resume(self.timings.resume_settle)
            self._notify_error(exc)
            raise

        reply = Message(
            role="assistant",
            content=result.content,
            model=result.model,
            task_type=result.task_type,
        )
        self.conversations.add_message(reply)
        self._emit_message(reply)
        if voice:
            if self._is_current(turn):
                await self._deliver(reply.content)
            else:
                logger.info("reply not spoken, the turn was cancelled while waiting")
        return reply

    def on_playback_starting(self) -> None:
        self._cancel_pending()
        # the detector must be paused before we speak
        if self.detector is not None:
            self.detector.stop()
        if self.capture is not None and self.capture.active:
            self.capture.abort()
        if self.state.voice_state is VoiceState.LISTENING:
            self._set_voice_state(VoiceState.IDLE)
        self._set_voice_state(VoiceState.SPEAKING)

    def on_playback_finished(self) -> None:
        self._set_voice_state(VoiceState.IDLE, force=True)
        if not self._wake_allowed():
            return
        listening = self.state.settings.listening
        if listening.continuous_listening:
            self._cancel_conversation_open()
            loop = asyncio.get_running_loop()
            self._conversation_handle = loop.call_later(
                self.timings.conversation_settle, self._enter_conversation_mode
            )
        else:
            self._schedule_resume(self.timings.resume_settle)

    def on_playback_stopped(self, by_user: bool) -> None:
        logger.info("playback stopped (by_user=%s)", by_user)
        self._cancel_pending()
        self._set_voice_state(VoiceState.IDLE, force=True)
        if self._wake_allowed():
            self._schedule_resume(self.timings.resume_settle)

    def on_conversation_timeout(self) -> None:
        logger.info("conversation window closed without speech")
        if self.capture is not None and self.capture.active:
            self.capture.abort()
        if self.state.voice_state is VoiceState.LISTENING:
            self._set_voice_state(VoiceState.IDLE)
        if self.detector is not None and self._wake_allowed():
            self.detector.force_restart()

    # ------------------------------------------------------------------ #
    # User controls
    # ------------------------------------------------------------------ #
    async def stop_speaking(self) -> None:
        """Interrupt speech at once and return to idle."""
        self._turn += 1
        self._cancel_pending()
        await self.speech.stop()
        if self.state.voice_state is not VoiceState.IDLE:
            self._set_voice_state(VoiceState.IDLE, force=True)
            if self._wake_allowed():
                self._schedule_resume(self.timings.resume_settle)

    def start_voice(self) -> bool:
        """Push-to-talk: open capture without the wake word."""
        new_cycle_id()
        if self.state.voice_state in (VoiceState.PROCESSING, VoiceState.SPEAKING):
            logger.info("push-to-talk ignored while %s", self.state.voice_state.value)
            return False
        if self.capture is not None and self.capture.active:
            return True
        self._cancel_pending()
        if self.detector is not None:
            self.detector.stop()
        return self._open_capture(auto_stop=self.state.settings.listening.auto_voice_detection)

    def finish_voice(self) -> None:
        """Submit what was captured so far."""
        if self.capture is not None:
            self.capture.stop()

    def stop_voice(self) -> None:
        """Cancel the capture without sending anything."""
        self._turn += 1
        self.timer.cancel()
        if self.capture is not None and self.capture.active:
            self.capture.abort()
        if self.state.voice_state in (VoiceState.LISTENING, VoiceState.PROCESSING):
            self._set_voice_state(VoiceState.IDLE, force=True)
        if self._wake_allowed():
            self._schedule_resume(self.timings.resume_settle)

    def set_voice_enabled(self, enabled: bool) -> None:
        self.state.voice_enabled = enabled
        if enabled:
            self._schedule_resume(0.0)
        else:
            self.stop_voice()
            if self.detector is not None:
                self.detector.stop()

    def toggle_chat_mode(self) -> ChatMode:
        target = ChatMode.VOICE if self.state.chat_mode is ChatMode.CHAT else ChatMode.CHAT
        self.set_chat_mode(target)
        return target

    def set_chat_mode(self, mode: ChatMode) -> None:
        if mode is self.state.chat_mode:
            return
        logger.info("chat mode -> %s", mode.value)
        self.state.chat_mode = mode
        if mode is ChatMode.CHAT:
            self._turn += 1
            self._cancel_pending()
            if self.capture is not None and self.capture.active:
                self.capture.abort()
            if self.state.voice_state in (VoiceState.LISTENING, VoiceState.PROCESSING):
                self._set_voice_state(VoiceState.IDLE, force=True)
            if self.detector is not None:
                self.detector.stop()
        else:
            self._schedule_resume(0.0)

    async def submit_chat(self, text: str) -> Optional[Message]:
        """Send typed text; the reply is shown, not spoken."""
        new_cycle_id()
        return await self.on_transcript_final(text, voice=False)

    async def speak_announcement(self, text: str) -> None:
        """Speak text that is not a reply (pomodoro, voice test)."""
        try:
            await self.speech.speak(text)
        except SpeechCancelledError:
            logger.info("announcement interrupted")
        except SpeechError as exc:
            self._notify_error(exc)

    # ------------------------------------------------------------------ #
    # Settings
    # ------------------------------------------------------------------ #
    async def change_tts_mode(self, mode: TTSMode | str) -> None:
        mode = TTSMode.parse(mode)
        if self.speech.speaking:
            await self.stop_speaking()
        voice = self.state.settings.voice
        voice.tts_mode = mode
        self._persist()
        await self.api.set_tts_mode(mode)
        voices = await self.load_voices()
        if mode is TTSMode.REMOTE and voices and voice.voice not in voices:
            logger.info("voice %s not offered by the server, using %s", voice.voice, voices[0])
            await self.change_voice(voices[0])

    async def change_voice(self, name: str) -> None:
        self.state.settings.voice.voice = name
        self._persist()
        if self.state.settings.voice.tts_mode is TTSMode.REMOTE:
            await self.api.set_voice(name)

    async def load_voices(self) -> list[str]:
        if self.state.settings.voice.tts_mode is TTSMode.REMOTE:
            voices = await self.api.list_voices()
        elif self.synthesizer is not None:
            voices = list(self.synthesizer.voices())
        else:
            voices = []
        self.state.available_voices = voices
        return voices

    def set_speech_rate(self, wpm: int) -> None:
        self.state.settings.voice.speech_rate = max(MIN_SPEECH_RATE, min(MAX_SPEECH_RATE, int(wpm)))
        self._persist()

    def set_microphone_gain(self, level: float) -> None:
        self.state.settings.listening.microphone_gain = float(level)
        if self.gain is not None:
            self.gain.update(level)
        self._persist()

    def set_wake_word_enabled(self, enabled: bool) -> None:
        self.state.settings.listening.wake_word_enabled = enabled
        self._persist()
        if self.detector is None:
            return
        self.detector.set_enabled(enabled)
        if enabled:
            self._schedule_resume(0.0)

    def set_wake_words(self, phrases: list[str]) -> None:
        words = [phrase.strip().lower() for phrase in phrases if phrase.strip()]
        if not words:
            raise ValueError("at least one wake word is required")
        self.state.settings.listening.wake_words = words
        self._persist()
        if self.detector is not None:
            self.detector.set_phrases(words)

    def set_continuous_listening(self, enabled: bool) -> None:
        self.state.settings.listening.continuous_listening = enabled
        self._persist()
        if not enabled:
            self._cancel_conversation_open()

    async def test_voice(self) -> None:
        await self.speak_announcement(TEST_PHRASE)

    # ------------------------------------------------------------------ #
    # Shutdown
    # ------------------------------------------------------------------ #
    async def shutdown(self) -> None:
        """Release every timer, stream and connection; safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self._turn += 1
        self._cancel_pending()
        try:
            if self.capture is not None:
                self.capture.abort()
            if self.detector is not None:
                self.detector.close()
            if self.speech.speaking:
                await self.speech.stop()
        finally:
            self.pomodoro.close()
            for task in list(self._tasks):
                task.cancel()
            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)
            if self.gain is not None:
                self.gain.cleanup()
            try:
                if self.channel is not None:
                    await self.channel.close()
            finally:
                await self.api.close()
            self.conversations.save()
            logger.info("voice orchestrator shut down")

    # ------------------------------------------------------------------ #
    # Internals: capture
    # ------------------------------------------------------------------ #
    def _open_capture(self, *, auto_stop: bool) -> bool:
        if self.capture is None:
            self._notify_error(JarvisError("Speech recognition is not available."))
            return False
        self._set_voice_state(VoiceState.LISTENING)
        if self.capture.start(auto_stop=auto_stop):
            return True
        self._set_voice_state(VoiceState.IDLE)
        self._schedule_resume(self.timings.no_speech_resume_delay, force=True)
        return False

    def _on_capture_transcript(self, text: str) -> None:
        logger.info("transcript: %s", text)
        self._spawn(self._dispatch_voice(text))

    async def _dispatch_voice(self, text: str) -> None:
        try:
            await self.on_transcript_final(text, voice=True)
        except DispatchError:
            return  # surfaced through the error callback

    def _on_no_speech(self) -> None:
        logger.info("capture ended without speech")
        if self.timer.armed:
            self.timer.cancel()
        if self.state.voice_state is VoiceState.LISTENING:
            self._set_voice_state(VoiceState.IDLE)
        if self._wake_allowed():
            self._schedule_resume(self.timings.no_speech_resume_delay, force=True)

    def _on_capture_activity(self, transcript: str) -> None:
        self.state.transcript = transcript
        if transcript.strip():
            # speech in progress keeps the conversation window open
            self.timer.cancel()
        if self._transcript_callback is not None:
            self._transcript_callback(transcript)

    def _enter_conversation_mode(self) -> None:
        self._conversation_handle = None
        if self.state.voice_state is not VoiceState.IDLE or not self._wake_allowed():
            return
        if self.capture is not None and self.capture.active:
            return
        logger.info("conversation mode: listening without wake phrase")
        if self._open_capture(auto_stop=True):
            self.timer.arm()

    # ------------------------------------------------------------------ #
    # Internals: speech
    # ------------------------------------------------------------------ #
    async def _deliver(self, text: str) -> None:
        try:
            await self.speech.speak(text)
        except SpeechCancelledError:
            logger.info("reply interrupted by user")
        except SpeechError as exc:
            self._notify_error(exc)
        finally:
            if self.state.voice_state is VoiceState.PROCESSING:
                # playback never started
                self._set_voice_state(VoiceState.IDLE)
                if self._wake_allowed():
                    self._schedule_resume(self.timings.resume_settle)

    # ------------------------------------------------------------------ #
    # Internals: pomodoro
    # ------------------------------------------------------------------ #
    async def _handle_confirmation(self, text: str) -> bool:
        lowered = text.lower()
        if CONTINUE_WORDS.search(lowered):
            logger.info("pomodoro continuation confirmed")
            self.state.awaiting_pomodoro_confirmation = False
            self._set_voice_state(VoiceState.PROCESSING)
            history = self.conversations.current_messages()
            turn = self._turn
            try:
                await self.api.send_command(CONTINUE_COMMAND, history)
            except DispatchError as exc:
                logger.warning("could not reach the server to continue: %s", exc)
                self.pomodoro.continue_session()
            else:
                if self.channel is None or not self.channel.connected:
                    self.pomodoro.continue_session()
            if self._is_current(turn):
                await self._deliver(CONTINUE_PHRASE)
            return True
        if DECLINE_WORDS.search(lowered):
            logger.info("pomodoro continuation declined")
            self.state.awaiting_pomodoro_confirmation = False
            self.pomodoro.dismiss_prompt()
            if self.state.voice_state is VoiceState.LISTENING:
                self._set_voice_state(VoiceState.IDLE)
            await self.speak_announcement(DECLINE_PHRASE)
            return True
        return False

    def _on_local_phase_complete(self, phase: PomodoroPhase) -> None:
        if phase is PomodoroPhase.BREAK:
            self.state.awaiting_pomodoro_confirmation = True
        if self.channel is not None and self.channel.connected:
            return  # the server announces phase changes itself
        if phase is PomodoroPhase.WORK:
            minutes = self.pomodoro.break_seconds // 60
            self._spawn(self.speak_announcement(f"Time for a {minutes}-minute break!"))
        elif phase is PomodoroPhase.BREAK:
            self._spawn(self.speak_announcement(PROMPT_PHRASE))

    def _on_pomodoro_sync(self, data: dict[str, Any]) -> None:
        sync = PomodoroSync.from_payload(data)
        if sync is None:
            logger.warning("ignored pomodoro_sync %r", data)
            return
        if sync.action in ("start_work", "stop"):
            self.state.awaiting_pomodoro_confirmation = False
        self.pomodoro.apply_sync(sync)

    def _on_pomodoro_phase_complete(self, data: dict[str, Any]) -> None:
        event = PhaseComplete.from_payload(data)
        if event.next_phase == "prompt":
            self.state.awaiting_pomodoro_confirmation = True
        if event.message:
            self._spawn(self.speak_announcement(event.message))

    def _on_pomodoro_command(self, data: dict[str, Any]) -> None:
        self.pomodoro.apply_command(str(data.get("action", "")))

    def _on_pomodoro_change(self, snapshot: PomodoroSnapshot) -> None:
        if snapshot.phase is self._pomodoro_phase:
            return
        logger.info("pomodoro %s -> %s", self._pomodoro_phase.value, snapshot.phase.value)
        self._pomodoro_phase = snapshot.phase
        if self._pomodoro_callback is not None:
            self._pomodoro_callback(snapshot)

    # ------------------------------------------------------------------ #
    # Internals: state and timers
    # ------------------------------------------------------------------ #
    def _set_voice_state(self, new: VoiceState, *, force: bool = False) -> bool:
        current = self.state.voice_state
        if new is current:
            return True
        if not force and new not in VOICE_TRANSITIONS[current]:
            logger.warning("refused voice transition %s -> %s", current.value, new.value)
            return False
        logger.debug("voice state %s -> %s", current.value, new.value)
        self.state.voice_state = new
        if self._state_callback is not None:
            self._state_callback(new)
        return True

    def _is_current(self, turn: int) -> bool:
        """True while nothing cancelled the turn that started at ``turn``."""
        return (
            not self._closed
            and turn == self._turn
            and self.state.voice_state is VoiceState.PROCESSING
        )

    def _wake_allowed(self) -> bool:
        return (
            not self._closed
            and self.state.voice_enabled
            and self.state.chat_mode is ChatMode.VOICE
            and self.state.settings.listening.wake_word_enabled
        )

    def _on_wake_state(self, wake_state: WakeWordState) -> None:
        self.state.wake_state = wake_state

    def _on_server_status(self, status: str) -> None:
        self.state.server_status = status  # type: ignore[assignment]

    def _schedule_resume(self, delay: float, *, force: bool = False) -> None:
        if self._resume_handle is not None:
            self._resume_handle.cancel()
        loop = asyncio.get_running_loop()
        self._resume_handle = loop.call_later(delay, self._resume_wake, force)

    def _resume_wake(self, force: bool) -> None:
        self._resume_handle = None
        if self.detector is None or not self.can_listen():
            return
        if force:
            self.detector.force_restart()
        else:
            self.detector.start()

    def _cancel_conversation_open(self) -> None:
        if self._conversation_handle is not None:
            self._conversation_handle.cancel()
            self._conversation_handle = None

    def _cancel_pending(self) -> None:
        self.timer.cancel()
        self._cancel_conversation_open()
        if self._resume_handle is not None:
            self._resume_handle.cancel()
            self._resume_handle = None

    def _persist(self) -> None:
        if self._save_settings is None:
            return
        try:
            self._save_settings(self.state.settings)
        except OSError as exc:
            logger.error("could not save settings: %s", exc)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _emit_message(self, message: Message) -> None:
        if self._message_callback is not None:
            self._message_callback(message)

    def _notify_error(self, exc: Exception) -> None:
        logger.error("voice error: %r", exc)
        if self._error_callback is not None:
            self._error_callback(exc)
