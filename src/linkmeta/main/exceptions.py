"""Exceptions raised by the link metadata pipeline."""


class LinkMetadataError(Exception):
    """Base class for pipeline errors."""


class QueueError(LinkMetadataError):
    """The metadata queue could not complete an operation."""


class MalformedJobError(QueueError):
    """A queue payload could not be decoded into a job.

    The payload has already been removed from the processing list when this
    is raised, so it is never handed out again.
    """

    def __init__(self, raw_payload: bytes | str, reason: str):
        self.raw_payload = raw_payload
        self.reason = reason
        super().__init__(f"Malformed metadata job payload: {reason}")


class FetchError(LinkMetadataError):
    """Fetching metadata for a URL failed.

    ``error_type`` is a short machine-friendly classification used in logs.
    """

    def __init__(self, message: str, error_type: str = "fetch_error"):
        self.error_type = error_type
        super().__init__(message)


class InvalidLinkMetadataError(LinkMetadataError):
    """Stored link metadata does not have the expected shape."""
