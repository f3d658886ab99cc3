from jobqueue.domain.states import ErrorCode


class JobError(Exception):
    """Base exception for job queue errors."""
    code: str = ErrorCode.JOB_ERROR
    status_code: int = 400


class JobNotFoundError(JobError):
    # Unknown and foreign jobs look the same to the caller.
    code = ErrorCode.NOT_FOUND
    status_code = 404

    def __init__(self, job_id):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class RateLimitedError(JobError):
    code = ErrorCode.RATE_LIMITED
    status_code = 429

    def __init__(self, owner_id: str, active: int, limit: int):
        super().__init__(
            f"Maximum {limit} concurrent jobs per owner ({active} active). "
            "Please wait for existing jobs to complete."
        )
        self.owner_id = owner_id
        self.active = active
        self.limit = limit


class UnknownJobTypeError(JobError):
    code = ErrorCode.UNKNOWN_JOB_TYPE
    status_code = 422

    def __init__(self, job_type: str):
        super().__init__(f"Unknown job type: {job_type}")
        self.job_type = job_type
