
class ShareError(Exception):
    """Base of the error kinds returned by the core operations.

    Instances are normally returned as the second member of a
    ``(result, err)`` tuple rather than raised. ``message`` is safe to show
    to the client; anything internal belongs in ``innerexception`` and the
    server log.
    """
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message=None, innerexception=None):
        self.message = message if message is not None else self.default_message
        self.innerexception = innerexception
        super().__init__(self.message)


class NotFoundError(ShareError):
    status_code = 404
    default_message = "Not found"


class ForbiddenError(ShareError):
    status_code = 403
    default_message = "Forbidden access"


class BadRequestError(ShareError):
    status_code = 400
    default_message = "Bad request"


class PayloadTooLargeError(ShareError):
    status_code = 413
    default_message = "Upload too large"


class ServerError(ShareError):
    status_code = 500
    default_message = "Internal server error"


class AccessError(ServerError):
    """Canonicalization failed for a reason other than a missing path."""
    default_message = "Error accessing path information"


class UploadStreamError(ConnectionError):
    """The request body stream ended abnormally (disconnect, framing error)."""
    pass
