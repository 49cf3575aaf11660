class ScrapeError(Exception):
    """Base exception for crawl-side errors."""

    def __init__(self, message: str, domain: str = "", url: str = ""):
        self.domain = domain
        self.url = url
        super().__init__(message)


class PermanentJobError(Exception):
    """A job failure that retrying cannot fix. The scheduler fails the job at once."""


class InvalidDomainError(ScrapeError, PermanentJobError):
    """Raised when a crawl target cannot be turned into a base URL."""


class NoHandlerError(PermanentJobError):
    """Raised when a claimed job has no registered handler."""

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"No handler registered for job type: {job_type}")


class StoreUnavailableError(Exception):
    """Raised when the job store or cache backing store cannot be reached."""

    def __init__(self, message: str, store: str = ""):
        self.store = store
        super().__init__(message)


class InvalidPayloadError(PermanentJobError):
    """Raised when a job payload is missing required fields or has bad values."""
