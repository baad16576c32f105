"""Exception hierarchy shared by the ingest pipeline, the syncer and the API."""


class ReelsyncError(Exception):
    """Base error for Reelsync."""


class InvalidRequestError(ReelsyncError):
    """The envelope or direct request could not be understood."""


class ObjectHeadError(ReelsyncError):
    """Object head metadata could not be fetched; the record is not created."""


class DurationProbeError(ReelsyncError):
    """Duration detection failed or timed out."""


class ThumbnailError(ReelsyncError):
    """A preview frame could not be produced or uploaded."""


class DeadlineExceeded(ReelsyncError):
    """The invocation deadline elapsed before an operation completed."""


class SyncError(ReelsyncError):
    """A distribution sync step failed."""


class InstanceNotFoundError(SyncError):
    """No compute instance matches the distribution tag selector."""


class SyncTimeoutError(SyncError):
    """The instance did not reach the expected state in time."""


class StorageDeletionError(ReelsyncError):
    """The backing storage object could not be deleted; nothing was changed."""


class PartialDeletionError(ReelsyncError):
    """The storage object was deleted but the metadata record was not."""

    def __init__(self, key: str, cause: BaseException):
        super().__init__(f"storage object deleted but metadata record remains for {key}: {cause}")
        self.key = key
        self.cause = cause


__all__ = [
    "ReelsyncError",
    "InvalidRequestError",
    "ObjectHeadError",
    "DurationProbeError",
    "ThumbnailError",
    "DeadlineExceeded",
    "SyncError",
    "InstanceNotFoundError",
    "SyncTimeoutError",
    "StorageDeletionError",
    "PartialDeletionError",
]
