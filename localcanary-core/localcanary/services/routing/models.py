import dataclasses
import datetime
import threading
import uuid
from enum import Enum
from typing import Optional

from localcanary.constants import LATEST_QUALIFIER
from localcanary.state.pickle import reducer


def generate_timestamp() -> str:
    return datetime.datetime.now(tz=datetime.timezone.utc).isoformat(timespec="milliseconds")


def generate_revision_id() -> str:
    return str(uuid.uuid4())


@dataclasses.dataclass(frozen=True)
class Version:
    """Immutable, numbered snapshot of a function's code and configuration."""

    function_name: str
    version_id: int
    code_ref: str
    config_ref: str
    description: str = ""
    created_at: str = dataclasses.field(default_factory=generate_timestamp)

    @property
    def qualifier(self) -> str:
        return str(self.version_id)


@dataclasses.dataclass(frozen=True)
class LatestPointer:
    """The unpublished working copy of a function, addressed as ``$LATEST``."""

    function_name: str
    code_ref: str
    config_ref: str
    updated_at: str = dataclasses.field(default_factory=generate_timestamp)

    @property
    def qualifier(self) -> str:
        return LATEST_QUALIFIER


@dataclasses.dataclass(frozen=True)
class AliasRouting:
    primary_version_id: int
    secondary_version_id: Optional[int] = None
    secondary_weight: Optional[float] = None

    @property
    def is_split(self) -> bool:
        return self.secondary_version_id is not None

    def references(self, version_id: int) -> bool:
        return version_id in (self.primary_version_id, self.secondary_version_id)


@dataclasses.dataclass(frozen=True)
class VersionAlias:
    function_name: str
    name: str
    routing: AliasRouting
    description: str = ""
    # regenerated by every dataclasses.replace, since it is not an init field
    revision_id: str = dataclasses.field(init=False, default_factory=generate_revision_id)


class AdmissionMode(str, Enum):
    UNRESERVED = "UNRESERVED"
    RESERVED = "RESERVED"
    DISABLED = "DISABLED"


@dataclasses.dataclass(frozen=True)
class ConcurrencyConfig:
    reserved_limit: Optional[int]
    account_pool_limit: int

    @property
    def mode(self) -> AdmissionMode:
        if self.reserved_limit is None:
            return AdmissionMode.UNRESERVED
        if self.reserved_limit == 0:
            return AdmissionMode.DISABLED
        return AdmissionMode.RESERVED


@dataclasses.dataclass
class Function:
    name: str
    latest: LatestPointer
    versions: dict[int, Version] = dataclasses.field(default_factory=dict)
    aliases: dict[str, VersionAlias] = dataclasses.field(default_factory=dict)
    next_version: int = 1
    lock: threading.RLock = dataclasses.field(default_factory=threading.RLock, compare=False)

    def aliases_referencing(self, version_id: int) -> list[VersionAlias]:
        return [alias for alias in self.aliases.values() if alias.routing.references(version_id)]


class RoutingStore:
    """
    Holds all functions of one routing service. Records inside a function are replaced, never mutated, so readers can
    take a reference without holding the function lock. Writers serialize on ``Function.lock``.
    """

    functions: dict[str, Function]
    lock: threading.RLock

    def __init__(self):
        self.functions = {}
        self.lock = threading.RLock()

    def reset(self):
        with self.lock:
            self.functions = {}

    def dump(self) -> dict[str, Function]:
        with self.lock:
            return dict(self.functions)

    def load(self, functions: dict[str, Function]):
        with self.lock:
            self.functions = dict(functions)

    def __repr__(self):
        return f"RoutingStore(functions={sorted(self.functions)})"


def _restore_function(
    name: str,
    latest: LatestPointer,
    versions: dict[int, Version],
    aliases: dict[str, VersionAlias],
    next_version: int,
) -> Function:
    return Function(
        name=name,
        latest=latest,
        versions=versions,
        aliases=aliases,
        next_version=next_version,
    )


@reducer(Function, _restore_function)
def _reduce_function(obj: Function):
    # the lock is not serialized, a fresh one is created on load
    with obj.lock:
        return obj.name, obj.latest, dict(obj.versions), dict(obj.aliases), obj.next_version
