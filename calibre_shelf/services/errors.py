"""Errors raised by the service layer; the HTTP layer maps them to responses."""


class StorageError(Exception):
    """Raised when the app store or the library store fails during a call."""

    def __init__(self, msg: str):
        self.msg = msg
        super().__init__(msg)
