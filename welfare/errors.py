"""Exception taxonomy shared by the services, the scheduler and the API layer."""


class WelfareError(Exception):
    """Base class for errors raised by the welfare services."""


class ValidationError(WelfareError):
    """Missing or malformed input to a service call. Never retried."""


class NotFoundError(WelfareError):
    """Target record does not exist or is not owned by the caller."""


class DeliveryError(WelfareError):
    """A delivery channel could not hand the notification to its transport.

    Raised by transports only; the delivery layer turns it into a failed
    delivery attempt on the notification record.
    """

    def __init__(self, message: str, response: dict | None = None) -> None:
        super().__init__(message)
        self.response = response


class JobError(WelfareError):
    """An exception caught at a scheduler job boundary."""

    def __init__(self, job_name: str, cause: BaseException) -> None:
        super().__init__(f"Job {job_name!r} failed: {cause}")
        self.job_name = job_name
        self.cause = cause
