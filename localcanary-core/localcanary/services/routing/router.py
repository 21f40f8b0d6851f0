import logging
import random
from typing import Optional, Protocol, Union

from localcanary.constants import LATEST_QUALIFIER
from localcanary.services.routing import api_utils, usage
from localcanary.services.routing.aliases import AliasTable
from localcanary.services.routing.exceptions import InvalidArgumentError
from localcanary.services.routing.models import AliasRouting

LOG = logging.getLogger(__name__)


class UniformSource(Protocol):
    """Anything that draws uniform floats, e.g. ``random.Random``."""

    def uniform(self, a: float, b: float) -> float: ...


def select_version(routing: AliasRouting, rng: UniformSource) -> int:
    """
    Picks the version an invocation is routed to. With a secondary version configured, one uniform draw in [0, 1)
    decides: draws below the weight go to the secondary version. A weight of 0 therefore never selects the secondary
    version, and a weight of 1 always does.

    :param routing: routing config snapshot of an alias
    :param rng: random source used for the draw
    :return: the selected version id
    """
    if routing.secondary_version_id is None:
        return routing.primary_version_id
    if rng.uniform(0, 1) < routing.secondary_weight:
        return routing.secondary_version_id
    return routing.primary_version_id


class Router:
    """
    Resolves invocation targets for aliases, applying the weighted traffic split of the alias per call.
    """

    aliases: AliasTable
    rng: UniformSource

    def __init__(self, aliases: AliasTable, rng: Optional[UniformSource] = None):
        self.aliases = aliases
        self.rng = rng or random.Random()

    def resolve_invocation_target(
        self, function_name: str, alias_name: str, rng: Optional[UniformSource] = None
    ) -> int:
        """
        Resolves an alias to the version this invocation should run against.

        :param function_name: name of the function
        :param alias_name: name of the alias
        :param rng: random source for the traffic split, defaults to the router's own instance
        :return: the selected version id
        """
        routing = self.aliases.resolve(function_name, alias_name)
        version_id = select_version(routing, rng or self.rng)
        if routing.is_split:
            if version_id == routing.secondary_version_id:
                usage.secondary_selected.record(function_name)
            else:
                usage.primary_selected.record(function_name)
            LOG.debug(
                "Routed %s to version %s (weight %s on version %s)",
                api_utils.qualified_name(function_name, alias_name),
                version_id,
                routing.secondary_weight,
                routing.secondary_version_id,
            )
        else:
            usage.primary_selected.record(function_name)
        return version_id

    def resolve_qualifier(
        self,
        function_name: str,
        qualifier: Optional[str] = None,
        rng: Optional[UniformSource] = None,
    ) -> Union[int, str]:
        """
        Resolves any qualifier to an invocation target: no qualifier or ``$LATEST`` targets the working copy, a
        version number targets that version, anything else is treated as an alias.

        :return: a version id, or ``$LATEST``
        """
        if qualifier is None or qualifier == LATEST_QUALIFIER:
            # raises if the function does not exist
            self.aliases.versions.get_latest(function_name)
            return LATEST_QUALIFIER
        if isinstance(qualifier, int) or api_utils.qualifier_is_version(qualifier):
            return self.aliases.versions.get(function_name, qualifier).version_id
        if api_utils.qualifier_is_alias(qualifier):
            return self.resolve_invocation_target(function_name, qualifier, rng=rng)
        raise InvalidArgumentError(f"Invalid qualifier {qualifier!r} for function {function_name}")
