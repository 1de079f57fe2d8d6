"""Translation of botocore failures into the controller's error taxonomy."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from botocore.exceptions import BotoCoreError, ClientError

from asgctl.core import NotFound, UpstreamUnavailable

# Error codes meaning the queried resource does not exist
_NOT_FOUND_CODES = frozenset({
    "InvalidInstanceID.NotFound",
    "InvalidInstanceID.Malformed",
    "InvalidSubnetID.NotFound",
    "InvalidLaunchTemplateName.NotFoundException",
    "InvalidLaunchTemplateId.NotFound",
    "InvalidLaunchTemplateId.VersionNotFound",
    "InvalidSpotInstanceRequestID.NotFound",
})


def error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "Unknown")


def is_not_found(exc: BaseException) -> bool:
    return isinstance(exc, ClientError) and error_code(exc) in _NOT_FOUND_CODES


@asynccontextmanager
async def translate_errors(
    operation: str,
    kind: str | None = None,
    name: str | None = None,
) -> AsyncIterator[None]:
    """Map botocore exceptions raised inside the block.

    ``ClientError`` with a not-found code becomes ``NotFound(kind, name)``
    when ``kind`` is given; every other botocore failure becomes
    ``UpstreamUnavailable(operation, ...)``. The cause is chained.
    """
    try:
        yield
    except ClientError as e:
        if kind is not None and is_not_found(e):
            raise NotFound(kind, name or "?") from e
        raise UpstreamUnavailable(operation, f"{error_code(e)}: {e}") from e
    except BotoCoreError as e:
        raise UpstreamUnavailable(operation, str(e)) from e


__all__ = [
    "error_code",
    "is_not_found",
    "translate_errors",
]
