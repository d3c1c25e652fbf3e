"""Error taxonomy shared by the job lifecycle components.

``retryable`` tells the worker whether the Work Queue should try the task again.
NotFound / InvalidState / Validation / UnsupportedSource describe permanent
conditions and are surfaced to the caller as-is.
"""


class Novel2EpubError(Exception):
    retryable = False


class NotFoundError(Novel2EpubError):
    pass


class InvalidStateError(Novel2EpubError):
    pass


class ValidationError(Novel2EpubError):
    pass


class UnsupportedSourceError(Novel2EpubError):
    def __init__(self, source: str | None):
        super().__init__(f"Unsupported novel source: {source!r}")
        self.source = source


class UpstreamFetchError(Novel2EpubError):
    retryable = True

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url


class GenerationError(Novel2EpubError):
    retryable = True


class UploadError(Novel2EpubError):
    retryable = True


class TransportError(Novel2EpubError):
    retryable = True


class LockTimeoutError(Novel2EpubError):
    retryable = True

    def __init__(self, key: str):
        super().__init__(f"Timed out waiting for lock: {key}")
        self.key = key
