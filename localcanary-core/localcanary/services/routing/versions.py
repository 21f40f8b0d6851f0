import dataclasses
import logging
from typing import Optional

from localcanary.constants import LATEST_QUALIFIER
from localcanary.services.routing import api_utils
from localcanary.services.routing.api_utils import PaginatedList, VersionRef
from localcanary.services.routing.exceptions import (
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
)
from localcanary.services.routing.models import (
    Function,
    LatestPointer,
    RoutingStore,
    Version,
    generate_timestamp,
)

LOG = logging.getLogger(__name__)


class VersionStore:
    """
    Registry of functions, their mutable ``$LATEST`` working copy and their immutable published versions.
    """

    store: RoutingStore

    def __init__(self, store: RoutingStore):
        self.store = store

    def get_function(self, function_name: str) -> Function:
        function = self.store.functions.get(function_name)
        if not function:
            raise NotFoundError(f"Function not found: {function_name}")
        return function

    # Functions

    def create_function(self, function_name: str, code_ref: str, config_ref: str) -> LatestPointer:
        api_utils.validate_function_name(function_name)
        with self.store.lock:
            if function_name in self.store.functions:
                raise ConflictError(f"Function already exist: {function_name}")
            latest = LatestPointer(
                function_name=function_name, code_ref=code_ref, config_ref=config_ref
            )
            self.store.functions[function_name] = Function(name=function_name, latest=latest)
        LOG.debug("Created function %s", function_name)
        return latest

    def delete_function(self, function_name: str) -> None:
        with self.store.lock:
            function = self.get_function(function_name)
            with function.lock:
                self.store.functions.pop(function_name, None)
        LOG.debug(
            "Deleted function %s with %d versions and %d aliases",
            function_name,
            len(function.versions),
            len(function.aliases),
        )

    def list_functions(self) -> list[str]:
        return sorted(self.store.functions)

    def get_latest(self, function_name: str) -> LatestPointer:
        return self.get_function(function_name).latest

    def update_latest(self, function_name: str, code_ref: str, config_ref: str) -> LatestPointer:
        """
        Overwrites the ``$LATEST`` working copy. Published versions are not affected.
        """
        function = self.get_function(function_name)
        with function.lock:
            function.latest = dataclasses.replace(
                function.latest,
                code_ref=code_ref,
                config_ref=config_ref,
                updated_at=generate_timestamp(),
            )
            return function.latest

    # Versions

    def publish(self, function_name: str, description: Optional[str] = None) -> Version:
        """
        Captures the current ``$LATEST`` contents as a new immutable version.

        Version ids start at 1 and are strictly increasing per function. An id is never handed out twice, even if the
        version holding it has been deleted in the meantime.

        :param function_name: name of the function to publish
        :param description: optional description of the new version
        :return: the new version
        """
        api_utils.validate_description(description)
        function = self.get_function(function_name)
        with function.lock:
            version_id = function.next_version
            function.next_version += 1
            latest = function.latest
            version = Version(
                function_name=function_name,
                version_id=version_id,
                code_ref=latest.code_ref,
                config_ref=latest.config_ref,
                description=description or "",
            )
            function.versions[version_id] = version
        LOG.debug("Published version %s", api_utils.qualified_name(function_name, version_id))
        return version

    def get(self, function_name: str, version_id: VersionRef) -> Version:
        version_id = api_utils.parse_version_id(function_name, version_id)
        function = self.get_function(function_name)
        version = function.versions.get(version_id)
        if not version:
            raise NotFoundError(
                f"Function not found: {api_utils.qualified_name(function_name, version_id)}"
            )
        return version

    def exists(self, function_name: str, version_id: int) -> bool:
        function = self.store.functions.get(function_name)
        return bool(function) and version_id in function.versions

    def list_versions(
        self, function_name: str, marker: str = None, max_items: int = None
    ) -> tuple[list[Version], Optional[str]]:
        function = self.get_function(function_name)
        versions = PaginatedList(sorted(function.versions.values(), key=lambda v: v.version_id))
        return versions.get_page(lambda version: version.qualifier, marker, max_items)

    def delete(self, function_name: str, version_id: VersionRef) -> None:
        """
        Deletes a published version.

        :raises InvalidArgumentError: if ``$LATEST`` is given
        :raises ConflictError: if an alias still routes traffic to this version
        :raises NotFoundError: if the function or the version does not exist
        """
        if version_id == LATEST_QUALIFIER:
            raise InvalidArgumentError(
                f"{api_utils.qualified_name(function_name, LATEST_QUALIFIER)} cannot be deleted "
                f"on its own, delete the function instead"
            )
        version_id = api_utils.parse_version_id(function_name, version_id)
        function = self.get_function(function_name)
        # alias creation and updates hold the same lock, so no alias can start to reference the version meanwhile
        with function.lock:
            if version_id not in function.versions:
                raise NotFoundError(
                    f"Function not found: {api_utils.qualified_name(function_name, version_id)}"
                )
            if referencing := function.aliases_referencing(version_id):
                alias_names = ", ".join(sorted(alias.name for alias in referencing))
                raise ConflictError(
                    f"Unable to delete version {api_utils.qualified_name(function_name, version_id)} "
                    f"because it is referenced by alias(es): {alias_names}"
                )
            function.versions.pop(version_id)
        LOG.debug("Deleted version %s", api_utils.qualified_name(function_name, version_id))
