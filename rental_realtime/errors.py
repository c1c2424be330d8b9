# ============================================
#   Rental Realtime — Error taxonomy
# ============================================
# Every error raised inside an event handler ends up as an "error" frame
# sent back to the sender. The connection always stays open.


class RealtimeError(Exception):
    code = "realtime_error"

    def __init__(self, message, code=None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class InvalidFrameError(RealtimeError):
    code = "invalid_frame"


class UnknownEventError(RealtimeError):
    code = "unknown_event"


class ValidationError(RealtimeError):
    code = "validation_error"


class ForbiddenError(RealtimeError):
    code = "forbidden"


class NotFoundError(RealtimeError):
    code = "not_found"


class StorageError(RealtimeError):
    code = "storage_error"
