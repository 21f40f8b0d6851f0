"""Utilities for routing operations such as name and qualifier validation and pagination."""

import re
from typing import Callable, List, Optional, Tuple, TypeVar, Union

from localcanary.constants import LATEST_QUALIFIER
from localcanary.services.routing.exceptions import InvalidArgumentError

# Pattern for a function name
FUNCTION_NAME_REGEX = re.compile(r"^[a-zA-Z0-9-_.]{1,64}$")
# Pattern for a version qualifier
VERSION_REGEX = re.compile(r"^[0-9]+$")
# Pattern for an alias qualifier, an alias must not look like a version
ALIAS_REGEX = re.compile(r"(?!^[0-9]+$)(^[a-zA-Z0-9-_]{1,128}$)")

MAX_ALIAS_DESCRIPTION_LENGTH = 256

VersionRef = Union[int, str]

_ListType = TypeVar("_ListType")


def qualifier_is_version(qualifier: str) -> bool:
    return bool(VERSION_REGEX.fullmatch(qualifier))


def qualifier_is_alias(qualifier: str) -> bool:
    return bool(ALIAS_REGEX.fullmatch(qualifier))


def qualified_name(function_name: str, qualifier: VersionRef) -> str:
    """Returns the ``<function>:<qualifier>`` notation used in error messages and logs."""
    return f"{function_name}:{qualifier}"


def validate_function_name(function_name: str) -> None:
    if not isinstance(function_name, str) or not FUNCTION_NAME_REGEX.fullmatch(function_name):
        raise InvalidArgumentError(
            f"Value '{function_name}' at 'functionName' failed to satisfy constraint: "
            f"Member must satisfy regular expression pattern: {FUNCTION_NAME_REGEX.pattern}"
        )


def validate_alias_name(alias_name: str) -> None:
    if not isinstance(alias_name, str) or not ALIAS_REGEX.fullmatch(alias_name):
        raise InvalidArgumentError(
            f"Value '{alias_name}' at 'name' failed to satisfy constraint: "
            f"Member must satisfy regular expression pattern: (?!^[0-9]+$)([a-zA-Z0-9-_]+)"
        )


def validate_description(description: Optional[str]) -> None:
    if description is not None and len(description) > MAX_ALIAS_DESCRIPTION_LENGTH:
        raise InvalidArgumentError(
            f"Value at 'description' failed to satisfy constraint: "
            f"Member must have length less than or equal to {MAX_ALIAS_DESCRIPTION_LENGTH}"
        )


def parse_version_id(function_name: str, version_id: VersionRef) -> int:
    """
    Normalizes a version reference into a numbered version id.

    :param function_name: the function the version belongs to, used for error messages
    :param version_id: an int, or a numeric string
    :return: the version id as int
    :raises InvalidArgumentError: if the reference is ``$LATEST`` or not a positive version number
    """
    if version_id == LATEST_QUALIFIER:
        raise InvalidArgumentError(
            f"{qualified_name(function_name, LATEST_QUALIFIER)} is not a published version"
        )
    if isinstance(version_id, bool):
        raise InvalidArgumentError(f"Invalid version {version_id!r} for function {function_name}")
    if isinstance(version_id, int):
        parsed = version_id
    elif isinstance(version_id, str) and qualifier_is_version(version_id):
        parsed = int(version_id)
    else:
        raise InvalidArgumentError(f"Invalid version {version_id!r} for function {function_name}")
    if parsed < 1:
        raise InvalidArgumentError(f"Invalid version {version_id!r} for function {function_name}")
    return parsed


class PaginatedList(List[_ListType]):
    """List which can be paginated and filtered."""

    DEFAULT_PAGE_SIZE = 50

    def get_page(
        self,
        token_generator: Callable[[_ListType], str],
        next_token: str = None,
        page_size: int = None,
        filter_function: Callable[[_ListType], bool] = None,
    ) -> Tuple[List[_ListType], Optional[str]]:
        if filter_function is not None:
            result_list = list(filter(filter_function, self))
        else:
            result_list = self

        if page_size is None:
            page_size = self.DEFAULT_PAGE_SIZE

        if len(result_list) <= page_size:
            return list(result_list), None

        start_idx = 0

        try:
            start_item = next(item for item in result_list if token_generator(item) == next_token)
            start_idx = result_list.index(start_item)
        except StopIteration:
            pass

        if start_idx + page_size < len(result_list):
            next_token = token_generator(result_list[start_idx + page_size])
        else:
            next_token = None

        return list(result_list[start_idx : start_idx + page_size]), next_token
