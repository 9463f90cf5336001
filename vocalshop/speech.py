"""Listening sessions for browser speech recognition.

Recognition itself runs in the browser; the widget streams its transcript
events here. A session accumulates final transcripts, treats interim ones as
activity only, and ends on stop() or after an idle timeout, at which point
the accumulated text is handed to the assistant exactly once.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Optional

logger = logging.getLogger("vocalshop.speech")

IDLE = "idle"
LISTENING = "listening"
STOPPED = "stopped"
CANCELLED = "cancelled"

UNSUPPORTED_MESSAGE = "La reconnaissance vocale n'est pas disponible dans ce navigateur."
PERMISSION_DENIED_MESSAGE = (
    "L'accès au micro a été refusé. Autorise le micro dans ton navigateur ou tape ta demande."
)
NOTHING_HEARD_MESSAGE = "Je n'ai rien entendu. Clique sur 🎙️ et essaie encore."

PERMISSION_ERRORS = {"not-allowed", "service-not-allowed", "permission-denied"}
UNSUPPORTED_ERRORS = {"unsupported", "audio-capture", "language-not-supported"}


class SpeechUnavailableError(RuntimeError):
    """Raised when the browser cannot provide speech recognition."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def advisory_for_error(code: str) -> SpeechUnavailableError:
    """Purpose: Map a browser recognition error code to an advisory error.
    Inputs/Outputs: Input is the SpeechRecognition error code; output is a
        SpeechUnavailableError carrying the inline message to show.
    Side Effects / State: None.
    Dependencies: PERMISSION_ERRORS, UNSUPPORTED_ERRORS.
    Failure Modes: Unknown codes map to the "nothing heard" advisory.
    If Removed: The widget shows raw browser error codes.
    Testing Notes: "not-allowed" -> permission message.
    """
    # Environment errors never crash the session; they become advisory text.
    if code in PERMISSION_ERRORS:
        return SpeechUnavailableError(code, PERMISSION_DENIED_MESSAGE)
    if code in UNSUPPORTED_ERRORS:
        return SpeechUnavailableError(code, UNSUPPORTED_MESSAGE)
    return SpeechUnavailableError(code, NOTHING_HEARD_MESSAGE)


class ListeningSession:
    """Cancellable listening session fed with transcript events."""

    def __init__(
        self,
        on_final: Callable[[str], None],
        idle_timeout: float = 8.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Purpose: Configure the session callback, idle timeout and clock.
        Inputs/Outputs: Inputs are the final-text callback, timeout seconds and a
            monotonic clock; no return value.
        Side Effects / State: Session starts in the idle state.
        Dependencies: None.
        Failure Modes: None at init.
        If Removed: Spoken queries have no end-of-utterance detection.
        Testing Notes: Inject a fake clock and drive check_idle manually.
        """
        # Keep callback and timing configuration; no timer runs until start().
        self._on_final = on_final
        self._idle_timeout = idle_timeout
        self._clock = clock
        self._finals: List[str] = []
        self._interim = ""
        self._last_activity = 0.0
        self.state = IDLE

    @property
    def listening(self) -> bool:
        return self.state == LISTENING

    @property
    def text(self) -> str:
        return " ".join(part for part in self._finals if part).strip()

    @property
    def interim(self) -> str:
        return self._interim

    def start(self) -> None:
        # Restarting resets accumulated text.
        self._finals = []
        self._interim = ""
        self._last_activity = self._clock()
        self.state = LISTENING
        logger.info("listening started idle_timeout=%.1fs", self._idle_timeout)

    def feed(self, transcript: str, is_final: bool) -> None:
        """Purpose: Record one transcript event from the recognizer.
        Inputs/Outputs: Inputs are the transcript and whether it is final; no return.
        Side Effects / State: Refreshes the idle timer; final text is accumulated.
        Dependencies: None.
        Failure Modes: Events after stop/cancel are ignored.
        If Removed: Nothing reaches the assistant from the microphone.
        Testing Notes: Two finals "chemise" + "bleue" -> text "chemise bleue".
        """
        # Interim events only count as activity.
        if self.state != LISTENING:
            return
        self._last_activity = self._clock()
        cleaned = (transcript or "").strip()
        if is_final:
            if cleaned:
                self._finals.append(cleaned)
            self._interim = ""
        else:
            self._interim = cleaned

    def stop(self) -> Optional[str]:
        """Stop listening and deliver the accumulated final text; returns it (or None)."""
        if self.state != LISTENING:
            return None
        self.state = STOPPED
        text = self.text
        logger.info("listening stopped chars=%d", len(text))
        if text:
            self._on_final(text)
            return text
        return None

    def cancel(self) -> None:
        # Drop everything without delivering.
        if self.state == LISTENING:
            logger.info("listening cancelled")
        self.state = CANCELLED
        self._finals = []
        self._interim = ""

    def check_idle(self, now: Optional[float] = None) -> bool:
        """Auto-stop when no event arrived for idle_timeout seconds; True if it stopped."""
        if self.state != LISTENING:
            return False
        now = self._clock() if now is None else now
        if now - self._last_activity < self._idle_timeout:
            return False
        logger.info("listening idle for %.1fs, auto-stop", now - self._last_activity)
        self.stop()
        return True

    async def watch(self, interval: float = 0.25) -> None:
        """Poll the idle timer until the session ends."""
        while self.state == LISTENING:
            await asyncio.sleep(interval)
            self.check_idle()
