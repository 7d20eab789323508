"""Error taxonomy shared by the game session, the stores and the HTTP layer.

Every failure a caller can observe is a ``GameError``. The HTTP layer maps
``status_code`` onto the response; the socket layer reports ``code``.
"""


class GameError(Exception):
    code = "game_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidActionError(GameError):
    """The action is not legal right now. Nothing was mutated."""

    code = "invalid_action"
    status_code = 400


class NotFoundError(GameError):
    code = "not_found"
    status_code = 404


class ConflictError(GameError):
    """The persisted room changed underneath the caller, or the request was a replay."""

    code = "conflict"
    status_code = 409


class InternalInconsistencyError(GameError):
    code = "internal_inconsistency"
    status_code = 500


class ExternalProviderError(GameError):
    code = "external_provider_failure"
    status_code = 502

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable
        if retryable:
            self.status_code = 503
