import logging

from live_transcribe.domain.events import TranscriptFragment, TranscriptState

logger = logging.getLogger(__name__)


class TranscriptAssembler:
    """Folds transcript fragments into committed and interim text.

    Finals are appended once per session: a final whose exact text was
    already committed is treated as a redelivery and only clears the
    interim. Interims replace each other verbatim.
    """

    def __init__(self) -> None:
        self._session_id: str | None = None
        self._committed = ""
        self._interim = ""
        self._seen_finals: set[str] = set()

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def state(self) -> TranscriptState:
        return TranscriptState(committed=self._committed, interim=self._interim)

    def bind(self, session_id: str) -> None:
        self.reset()
        self._session_id = session_id

    def unbind(self) -> None:
        self._session_id = None

    def reset(self) -> None:
        self._committed = ""
        self._interim = ""
        self._seen_finals.clear()

    def apply(self, fragment: TranscriptFragment) -> bool:
        if self._session_id is None or fragment.session_id != self._session_id:
            logger.debug("Dropping fragment from session %s", fragment.session_id)
            return False

        if not fragment.is_final:
            if fragment.text == self._interim:
                return False
            self._interim = fragment.text
            return True

        had_interim = bool(self._interim)
        self._interim = ""

        text = fragment.text.strip()
        if not text:
            return had_interim
        if text in self._seen_finals:
            logger.debug("Duplicate final ignored: %s", text)
            return had_interim

        self._committed = f"{self._committed} {text}" if self._committed else text
        self._seen_finals.add(text)
        logger.info("Transcript: %s", text)
        return True
