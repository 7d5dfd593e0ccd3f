class QueryFetchError(Exception):
    """
    Raised when an upstream API request fails or returns something other than
    the response shape we expect.

    `status_code` and `body` are populated when a response was received;
    `errors` holds validation errors when the response could not be parsed.
    """

    def __init__(self, message, status_code=None, body=None, errors=None, url=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.errors = errors
        self.url = url

    @property
    def is_transient(self):
        return self.status_code is not None and (
            self.status_code == 429 or self.status_code >= 500
        )


class TransientQueryFetchError(QueryFetchError):
    """
    Rate limiting or a server error: the same request may succeed later
    """


class SnapshotNotFound(Exception):
    pass


class RunNotFound(Exception):
    pass
