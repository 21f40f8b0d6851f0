import dataclasses
import logging
from typing import Optional

from localcanary.services.routing import api_utils
from localcanary.services.routing.api_utils import PaginatedList, VersionRef
from localcanary.services.routing.exceptions import (
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    PreconditionFailedError,
)
from localcanary.services.routing.models import AliasRouting, Function, VersionAlias
from localcanary.services.routing.versions import VersionStore

LOG = logging.getLogger(__name__)


class AliasTable:
    """
    Named, mutable routing targets per function. An alias points to a primary version and optionally splits a share of
    the traffic off to a secondary version.

    Every update replaces the alias record as a whole, so ``resolve`` never observes a half-applied routing config.
    """

    versions: VersionStore

    def __init__(self, versions: VersionStore):
        self.versions = versions

    def _get_function(self, function_name: str) -> Function:
        return self.versions.get_function(function_name)

    def _get_alias(self, function: Function, alias_name: str) -> VersionAlias:
        if not (alias := function.aliases.get(alias_name)):
            raise NotFoundError(
                f"Cannot find alias: {api_utils.qualified_name(function.name, alias_name)}"
            )
        return alias

    def _check_version_exists(self, function: Function, version_id: int) -> None:
        if version_id not in function.versions:
            raise NotFoundError(
                f"Function not found: {api_utils.qualified_name(function.name, version_id)}"
            )

    def _create_routing_model(
        self,
        function: Function,
        primary_version_id: VersionRef,
        secondary_version_id: Optional[VersionRef],
        secondary_weight: Optional[float],
    ) -> AliasRouting:
        primary = api_utils.parse_version_id(function.name, primary_version_id)
        self._check_version_exists(function, primary)

        if secondary_version_id is None:
            if secondary_weight is not None:
                raise InvalidArgumentError(
                    "A secondary weight requires a secondary version, "
                    "remove the weight to route all traffic to the primary version"
                )
            return AliasRouting(primary_version_id=primary)

        secondary = api_utils.parse_version_id(function.name, secondary_version_id)
        if secondary == primary:
            raise InvalidArgumentError(
                f"Invalid function version {secondary}. "
                f"Function version {secondary} is already included in routing configuration."
            )
        if secondary_weight is None:
            raise InvalidArgumentError(
                f"A weight is required when routing to secondary version {secondary}"
            )
        if isinstance(secondary_weight, bool) or not isinstance(secondary_weight, (int, float)):
            raise InvalidArgumentError(f"Invalid weight {secondary_weight!r}, expected a number")
        if not 0.0 < secondary_weight <= 1.0:
            raise InvalidArgumentError(
                f"Value '{secondary_weight}' at 'secondaryWeight' failed to satisfy constraint: "
                f"Member must have value greater than 0.0 and less than or equal to 1.0"
            )
        self._check_version_exists(function, secondary)
        return AliasRouting(
            primary_version_id=primary,
            secondary_version_id=secondary,
            secondary_weight=float(secondary_weight),
        )

    def create_alias(
        self,
        function_name: str,
        alias_name: str,
        primary_version_id: VersionRef,
        description: str = "",
    ) -> VersionAlias:
        api_utils.validate_alias_name(alias_name)
        api_utils.validate_description(description)
        function = self._get_function(function_name)
        with function.lock:
            if alias_name in function.aliases:
                raise ConflictError(
                    f"Alias already exists: {api_utils.qualified_name(function_name, alias_name)}"
                )
            routing = self._create_routing_model(function, primary_version_id, None, None)
            alias = VersionAlias(
                function_name=function_name,
                name=alias_name,
                routing=routing,
                description=description or "",
            )
            function.aliases[alias_name] = alias
        LOG.debug(
            "Created alias %s pointing to version %s",
            api_utils.qualified_name(function_name, alias_name),
            routing.primary_version_id,
        )
        return alias

    def update_alias(
        self,
        function_name: str,
        alias_name: str,
        primary_version_id: VersionRef,
        secondary_version_id: Optional[VersionRef] = None,
        secondary_weight: Optional[float] = None,
        description: Optional[str] = None,
        revision_id: Optional[str] = None,
    ) -> VersionAlias:
        """
        Atomically replaces the routing config of an alias. Partial configurations (a weight without a secondary
        version, or the other way around) are rejected.

        :param function_name: name of the function
        :param alias_name: name of the alias to update
        :param primary_version_id: version receiving the remaining traffic
        :param secondary_version_id: optional version receiving ``secondary_weight`` of the traffic
        :param secondary_weight: share of traffic for the secondary version, in (0, 1]
        :param description: new description, the current one is kept if not given
        :param revision_id: if given, the update only happens if it matches the current revision id of the alias
        :return: the updated alias
        """
        api_utils.validate_description(description)
        function = self._get_function(function_name)
        with function.lock:
            alias = self._get_alias(function, alias_name)
            if revision_id and alias.revision_id != revision_id:
                raise PreconditionFailedError(
                    "The Revision Id provided does not match the latest Revision Id. "
                    "Call get_alias to retrieve the latest Revision Id"
                )
            routing = self._create_routing_model(
                function, primary_version_id, secondary_version_id, secondary_weight
            )
            changes = {"routing": routing}
            if description is not None:
                changes["description"] = description
            alias = dataclasses.replace(alias, **changes)
            function.aliases[alias_name] = alias
        LOG.debug(
            "Updated alias %s: primary=%s secondary=%s weight=%s",
            api_utils.qualified_name(function_name, alias_name),
            routing.primary_version_id,
            routing.secondary_version_id,
            routing.secondary_weight,
        )
        return alias

    def resolve(self, function_name: str, alias_name: str) -> AliasRouting:
        """
        Returns the current routing config of the alias. This is a lock-free read of an immutable record.
        """
        function = self._get_function(function_name)
        return self._get_alias(function, alias_name).routing

    def get_alias(self, function_name: str, alias_name: str) -> VersionAlias:
        function = self._get_function(function_name)
        return self._get_alias(function, alias_name)

    def list_aliases(
        self,
        function_name: str,
        version_id: Optional[VersionRef] = None,
        marker: str = None,
        max_items: int = None,
    ) -> tuple[list[VersionAlias], Optional[str]]:
        """
        Lists the aliases of a function, optionally only those that route traffic to ``version_id``.
        """
        function = self._get_function(function_name)
        filter_function = None
        if version_id is not None:
            version_id = api_utils.parse_version_id(function_name, version_id)
            filter_function = lambda alias: alias.routing.references(version_id)  # noqa
        aliases = PaginatedList(sorted(function.aliases.values(), key=lambda a: a.name))
        return aliases.get_page(
            lambda alias: alias.name,
            marker,
            max_items,
            filter_function=filter_function,
        )

    def delete_alias(self, function_name: str, alias_name: str) -> None:
        function = self._get_function(function_name)
        with function.lock:
            self._get_alias(function, alias_name)
            function.aliases.pop(alias_name)
        LOG.debug("Deleted alias %s", api_utils.qualified_name(function_name, alias_name))
