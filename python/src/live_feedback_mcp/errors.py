"""
Exceptions for the feedback engine.

Only SessionNotFound and InvalidInput ever reach callers of process_change.
Provider errors are converted into failure entries by the aggregator, and
CacheUnavailable degrades to a cache miss.
"""


class FeedbackEngineError(Exception):
    """Base exception for all feedback engine errors."""
    kind = "engine_error"


class NotFoundError(FeedbackEngineError):
    """Raised when a referenced entity does not exist."""
    kind = "not_found"


class SessionNotFound(NotFoundError):
    """Raised when a session id is unknown or the session has ended."""
    kind = "session_not_found"

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class InvalidInput(FeedbackEngineError):
    """Raised when a change event or session config is malformed."""
    kind = "invalid_input"


class ProviderFailure(FeedbackEngineError):
    """Raised by a provider when it cannot produce findings."""
    kind = "provider_unavailable"

    def __init__(self, provider_id: str, message: str = ""):
        super().__init__(f"{provider_id}: {message}" if message else provider_id)
        self.provider_id = provider_id
        self.detail = message or type(self).__name__


class ProviderTimeout(ProviderFailure):
    """A provider did not finish before the phase deadline."""
    kind = "provider_timeout"


class CacheUnavailable(FeedbackEngineError):
    """The content cache cannot serve requests; callers treat it as a miss."""
    kind = "cache_unavailable"
