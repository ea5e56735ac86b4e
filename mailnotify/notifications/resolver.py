"""Specification lookup for notification types.

The pipeline only needs the read path: given a notification type, return its
specification or nothing. Storage of specifications belongs to whatever owns
them (a database, an admin API); the resolvers here serve them from memory
or from the ``specifications`` list of a YAML file.
"""

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol

import yaml
from pydantic import ValidationError

from mailnotify.config.exceptions import ConfigurationError
from mailnotify.domain.models import NotificationSpecification
from mailnotify.logging import get_logger

logger = get_logger(__name__, component="resolver")


class SpecificationResolver(Protocol):
    """Read-only access to notification specifications."""

    def get_by_notification_type(self, notification_type: str) -> Optional[NotificationSpecification]:
        ...


class InMemorySpecificationResolver:
    """Resolver backed by a dictionary keyed by notification type."""

    def __init__(self, specifications: Iterable[NotificationSpecification] = ()):
        self._specifications: Dict[str, NotificationSpecification] = {}
        for spec in specifications:
            self.register(spec)

    def register(self, specification: NotificationSpecification) -> None:
        """Add or replace the specification for its notification type."""
        self._specifications[specification.notification_type] = specification

    def get_by_notification_type(self, notification_type: str) -> Optional[NotificationSpecification]:
        return self._specifications.get(notification_type)

    def notification_types(self) -> List[str]:
        return sorted(self._specifications)

    def __len__(self) -> int:
        return len(self._specifications)


def load_specifications(path: Path) -> List[NotificationSpecification]:
    """Load specifications from a YAML file.

    The file holds either a top-level list of specifications or a mapping
    with a ``specifications`` key.

    Raises:
        ConfigurationError: If the file is unreadable or a specification is invalid
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read specifications file: {path}: {e}",
            suggestions=[f"Ensure {path} exists and is readable"],
        ) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Failed to parse specifications file {path}: {e}",
            suggestions=["Check YAML syntax in the specifications file"],
        ) from e

    if isinstance(raw, dict):
        raw = raw.get("specifications")

    if not isinstance(raw, list):
        raise ConfigurationError(
            f"Specifications file {path} must contain a list of specifications",
            suggestions=["Put specifications under a top-level 'specifications:' key"],
        )

    specifications = []
    errors = []
    for index, item in enumerate(raw):
        try:
            specifications.append(NotificationSpecification.model_validate(item))
        except ValidationError as e:
            for detail in e.errors():
                field_path = " -> ".join(str(loc) for loc in detail["loc"])
                errors.append(f"specifications[{index}] -> {field_path}: {detail['msg']}")

    if errors:
        raise ConfigurationError(
            f"Invalid specifications in {path}",
            errors=errors,
            suggestions=["Every specification needs notification_type, subject, html_body and from_address"],
        )

    logger.info(
        f"Loaded {len(specifications)} notification specification(s) from {path}",
        extra={"event": "resolver.specifications.loaded", "count": len(specifications)},
    )
    return specifications
