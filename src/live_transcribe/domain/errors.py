class TranscriptionError(Exception):
    pass


class SessionError(TranscriptionError):
    pass


class AlreadyActiveError(SessionError):
    pass


class StartAbortedError(SessionError):
    pass


class CaptureError(TranscriptionError):
    pass


class PermissionDeniedError(CaptureError):
    pass


class DeviceUnavailableError(CaptureError):
    pass


class BackendStartError(TranscriptionError):
    pass


class ChunkSendError(TranscriptionError):
    pass


class BackendStopError(TranscriptionError):
    pass


class RecognitionError(TranscriptionError):
    pass


class RecognizerUnavailableError(TranscriptionError):
    pass


class ProxyCommandError(TranscriptionError):
    pass
