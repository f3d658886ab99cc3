from enum import StrEnum, auto


class JobStatus(StrEnum):
    PENDING = auto()     # Created, waiting for a worker
    PROCESSING = auto()  # Claimed by a worker
    COMPLETED = auto()   # Finished with a result
    FAILED = auto()      # Retries exhausted, expired or stuck
    CANCELLED = auto()   # Cancelled by the owner


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)
TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class JobType(StrEnum):
    SYNC_YOUTUBE = auto()
    SYNC_INSTAGRAM = auto()
    SYNC_TIKTOK = auto()
    AI_GENERATE_TAGS = auto()
    AI_BULK_TAG = auto()
    AUTO_SYNC = auto()
    FOLLOWER_SYNC = auto()
    ECHO = auto()  # Diagnostic: returns its params


class LogLevel(StrEnum):
    DEBUG = auto()
    INFO = auto()
    WARNING = auto()
    ERROR = auto()


class ErrorCode(StrEnum):
    RATE_LIMITED = "RATE_LIMITED"
    NOT_FOUND = "NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    UNKNOWN_JOB_TYPE = "UNKNOWN_JOB_TYPE"
    EXPIRED = "EXPIRED"
    STUCK = "STUCK"
    JOB_ERROR = "JOB_ERROR"
    HANDLER_TIMEOUT = "HANDLER_TIMEOUT"
