from typing import Optional


class RoutingServiceException(Exception):
    """
    An exception that indicates that a routing or admission error occurred.
    Do not raise this exception directly, use one of the subclasses instead.
    """

    code: str = "ServiceException"
    sender_fault: bool = False
    status_code: int = 500

    def __init__(self, message: str = None):
        self.message = message or self.code
        super().__init__(self.message)


class NotFoundError(RoutingServiceException):
    """A referenced function, version or alias does not exist."""

    code: str = "ResourceNotFoundException"
    sender_fault: bool = True
    status_code: int = 404


class ConflictError(RoutingServiceException):
    """Duplicate creation, or deletion of a resource that is still in use."""

    code: str = "ResourceConflictException"
    sender_fault: bool = True
    status_code: int = 409


class PreconditionFailedError(ConflictError):
    """The revision id given by the caller does not match the current revision id."""

    code: str = "PreconditionFailedException"
    status_code: int = 412


class InvalidArgumentError(RoutingServiceException, ValueError):
    """Malformed name, qualifier, weight or limit."""

    code: str = "InvalidParameterValueException"
    sender_fault: bool = True
    status_code: int = 400


class ThrottledError(RoutingServiceException):
    """
    Admission denied, no concurrency slot was available. Expected and frequent under load, callers decide whether to
    retry (see ``retries.retry_on_throttle``).
    """

    code: str = "TooManyRequestsException"
    sender_fault: bool = True
    status_code: int = 429

    def __init__(self, message: str = None, reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason


class InvalidStateError(RoutingServiceException, RuntimeError):
    """Programmer misuse, for example releasing a permit twice."""

    code: str = "InvalidStateException"
    status_code: int = 500


class ThrottleReason:
    ConcurrentInvocationLimitExceeded = "ConcurrentInvocationLimitExceeded"
    ReservedFunctionConcurrentInvocationLimitExceeded = (
        "ReservedFunctionConcurrentInvocationLimitExceeded"
    )
    FunctionInvocationDisabled = "FunctionInvocationDisabled"
