class RelayError(Exception):
    """Base exception for the relay service."""

    code = "RELAY_ERROR"
    status_code = 500


class PendingQuestionExistsError(RelayError):
    """Raised when a question is posted while another one is still pending."""

    code = "PENDING_EXISTS"
    status_code = 409

    def __init__(self, session_id: str, message_id: str):
        self.session_id = session_id
        self.message_id = message_id
        super().__init__("A pending question already exists for this session.")


class PermissionDeniedError(RelayError):
    """Raised when the caller may not act on behalf of the target user."""

    code = "FORBIDDEN"
    status_code = 403


class RelayValidationError(RelayError):
    """Raised when a request is missing a field the current mode requires."""

    code = "BAD_REQUEST"
    status_code = 400


class LinkCodeInvalidError(RelayError):
    """Raised when a link code is unknown, already used, or expired."""

    code = "INVALID_CODE"
    status_code = 400

    def __init__(self):
        super().__init__("Invalid or expired link code.")


class LinkingUnavailableError(RelayError):
    """Raised when account linking is requested outside multi-user mode."""

    code = "LINKING_UNAVAILABLE"
    status_code = 503
