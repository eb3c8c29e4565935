"""
Upload failure taxonomy.

Every stage raises one of these; the HTTP layer is the only place that turns
them into a client response. ``client_message`` is what the upload widget
shows, ``prevent_retry`` tells it not to resend the part.
"""


class UploadError(Exception):
    client_message = "Problem handling the upload!"
    prevent_retry = False

    def __init__(self, detail: str = "", client_message: str | None = None):
        super().__init__(detail or self.client_message)
        if client_message is not None:
            self.client_message = client_message


class InvalidUploadError(UploadError):
    client_message = "Invalid upload request!"
    prevent_retry = True


class FileTooLargeError(UploadError):
    client_message = "Too big!"
    prevent_retry = True


class ChunkStoreError(UploadError):
    client_message = "Problem storing the chunk!"


class ReassemblyError(UploadError):
    client_message = "Problem combining the chunks!"


class IncompleteUploadError(ReassemblyError):
    pass


class CommitError(UploadError):
    client_message = "Problem saving the file to storage!"


class StorageError(Exception):
    """Raised by storage providers when the remote store rejects or drops a call."""


class OwnerNotFoundError(LookupError):
    pass
