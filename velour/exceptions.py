# encoding: utf-8
"""
velour.exceptions

Everything that can go wrong...
"""


class TransportError(IOError):
    """The HTTP exchange could not be completed (refused connection, DNS, TLS,
    timeout, or a stream that dropped mid-body). The underlying exception is
    kept in `cause`.
    """
    def __init__(self, msg, cause=None):
        super(TransportError, self).__init__(msg)
        self.cause = cause


class MalformedResponse(ValueError):
    """A response body (or a single record of a changes feed) could not be
    decoded into the shape the operation expects."""


class HTTPError(Exception):
    """Base class for responses whose status falls outside the 2xx range.

    Attributes:
        code (int): the HTTP status exactly as the server sent it

        error (str): the server's error code (e.g., ``not_found``) when the body
        had the usual ``{error:'', reason:''}`` shape, otherwise None

        reason (str): the server's explanation, or None

        detail: the decoded error payload whatever its shape (or the raw text
        if it wasn't json)
    """
    def __init__(self, code, error=None, reason=None, detail=None):
        self.code = code
        self.error = error
        self.reason = reason
        self.detail = detail
        super(HTTPError, self).__init__(code, error, reason)

    def __str__(self):
        if self.error is None and self.reason is None:
            return '%i %s' % (self.code, self.detail or '')
        return '%i %s: %s' % (self.code, self.error, self.reason)


class Unauthorized(HTTPError):
    """Exception raised when the server requires authentication credentials
    but either none are provided, or they are incorrect.
    """

class NotFound(HTTPError):
    """Exception raised when a 404 HTTP error is received in response to a
    request.
    """

class Conflict(HTTPError):
    """Exception raised when a 409 HTTP error is received in response to a
    request."""

class PreconditionFailed(HTTPError):
    """Exception raised when a 412 HTTP error is received in response to a
    request (e.g., when creating a database that already exists).
    """

class ServerError(HTTPError):
    """Exception raised when a 5xx HTTP error is received in response
    to a request.
    """


STATUS_ERRORS = {401:Unauthorized, 404:NotFound, 409:Conflict, 412:PreconditionFailed}

def error_for_status(code):
    """Pick the HTTPError subclass matching a status code."""
    if code in STATUS_ERRORS:
        return STATUS_ERRORS[code]
    if code >= 500:
        return ServerError
    return HTTPError
