from collections.abc import Callable
from typing import Protocol

ResultCallback = Callable[[str, bool], None]
ErrorCallback = Callable[[str], None]
EndCallback = Callable[[], None]


class SpeechRecognizerPort(Protocol):
    async def start(
        self,
        *,
        language: str,
        continuous: bool,
        interim_results: bool,
        on_result: ResultCallback,
        on_error: ErrorCallback,
        on_end: EndCallback,
    ) -> None: ...
    async def stop(self) -> None: ...
