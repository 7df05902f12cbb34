"""Domain enumerations."""

from enum import StrEnum


class MediaType(StrEnum):
    """Kind of media asset being launched."""

    VIDEO = "video"
    IMAGE = "image"


class MediaStage(StrEnum):
    """Coarse pipeline position of a media item."""

    UPLOAD = "upload"
    POLL = "poll"
    AD = "ad"
    DONE = "done"
    FAILED = "failed"


class MediaStatus(StrEnum):
    """Fine-grained execution state within a stage."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    RETRY = "retry"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_pending(self) -> bool:
        """Whether the item is waiting to be dispatched by its stage."""
        return self in (MediaStatus.QUEUED, MediaStatus.RETRY)


class LaunchPhase(StrEnum):
    """Overall macro state of a launch run."""

    IDLE = "idle"
    CHECKING = "checking"
    UPLOADING = "uploading"
    POLLING = "polling"
    CREATING_CAMPAIGN = "creating_campaign"
    CREATING_ADS = "creating_ads"
    STOPPED = "stopped"
    COMPLETE = "complete"
    ERROR = "error"


class StageName(StrEnum):
    """Stages an operator can run out of band."""

    CHECK = "check"
    UPLOAD = "upload"
    CAMPAIGN = "campaign"
    ADS = "ads"
    POLL = "poll"


class AdStatus(StrEnum):
    """Delivery status new ads are created with."""

    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
