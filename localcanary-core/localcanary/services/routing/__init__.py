from localcanary.services.routing.aliases import AliasTable
from localcanary.services.routing.concurrency import ConcurrencyGovernor, Permit
from localcanary.services.routing.exceptions import (
    ConflictError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    PreconditionFailedError,
    RoutingServiceException,
    ThrottledError,
)
from localcanary.services.routing.models import (
    AdmissionMode,
    AliasRouting,
    ConcurrencyConfig,
    LatestPointer,
    RoutingStore,
    Version,
    VersionAlias,
)
from localcanary.services.routing.router import Router, select_version
from localcanary.services.routing.service import InvocationResult, RoutingService
from localcanary.services.routing.versions import VersionStore

__all__ = [
    "AdmissionMode",
    "AliasRouting",
    "AliasTable",
    "ConcurrencyConfig",
    "ConcurrencyGovernor",
    "ConflictError",
    "InvalidArgumentError",
    "InvalidStateError",
    "InvocationResult",
    "LatestPointer",
    "NotFoundError",
    "Permit",
    "PreconditionFailedError",
    "Router",
    "RoutingService",
    "RoutingServiceException",
    "RoutingStore",
    "ThrottledError",
    "Version",
    "VersionAlias",
    "VersionStore",
    "select_version",
]
