"""
Metric definition registry.

Loads static metric definitions ({id, category, threshold, polarity,
integrity_critical, ...}) from JSON files or plain dictionaries and rejects
malformed entries up front, so the engine never has to guess a metric's
polarity or threshold.

Accepted file layouts:
    [{"id": "error_rate", ...}, ...]
    {"metrics": [{"id": "error_rate", ...}, ...]}
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Union

from pydantic import ValidationError

from riskwatch.core.exceptions import InvalidConfigurationError, NotFoundError

from .schema import MetricDefinition

logger = logging.getLogger(__name__)


def _describe_errors(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ())) or "<root>"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


class DefinitionRegistry:
    """
    Ordered collection of MetricDefinition objects.

    Definition order is preserved and becomes the Metric Store's insertion
    order.
    """

    def __init__(self, definitions: Iterable[MetricDefinition] = ()) -> None:
        self._definitions: Dict[str, MetricDefinition] = {}
        for definition in definitions:
            self.register(definition)

    def __len__(self) -> int:
        return len(self._definitions)

    def __iter__(self) -> Iterator[MetricDefinition]:
        return iter(list(self._definitions.values()))

    def __contains__(self, metric_id: object) -> bool:
        return metric_id in self._definitions

    def register(self, definition: MetricDefinition) -> None:
        if definition.id in self._definitions:
            raise InvalidConfigurationError(f"Duplicate metric definition: {definition.id}")
        self._definitions[definition.id] = definition

    def get(self, metric_id: str) -> MetricDefinition:
        definition = self._definitions.get(metric_id)
        if definition is None:
            raise NotFoundError("metric definition", metric_id)
        return definition

    @classmethod
    def from_dicts(cls, raw_definitions: Iterable[Mapping[str, Any]]) -> "DefinitionRegistry":
        """
        Build a registry from raw dictionaries.

        Raises:
            InvalidConfigurationError: If any entry fails validation (for
                example a missing polarity) or ids collide
        """
        registry = cls()
        for index, raw in enumerate(raw_definitions):
            if not isinstance(raw, Mapping):
                raise InvalidConfigurationError(
                    f"Metric definition #{index} must be an object, got {type(raw).__name__}"
                )
            try:
                definition = MetricDefinition.model_validate(dict(raw))
            except ValidationError as exc:
                metric_id = raw.get("id", f"#{index}")
                raise InvalidConfigurationError(
                    f"Invalid metric definition {metric_id}: {_describe_errors(exc)}"
                ) from exc
            registry.register(definition)

        logger.info("Loaded %d metric definitions", len(registry))
        return registry

    @classmethod
    def from_file(cls, filepath: Union[str, Path]) -> "DefinitionRegistry":
        path = Path(filepath)
        if not path.exists():
            raise InvalidConfigurationError(f"Definition file not found: {path}")

        try:
            content = json.loads(path.read_text(encoding="utf-8").lstrip("\ufeff"))
        except json.JSONDecodeError as exc:
            raise InvalidConfigurationError(f"Invalid JSON in {path}: {exc}") from exc

        raw_definitions: List[Any]
        if isinstance(content, list):
            raw_definitions = content
        elif isinstance(content, dict) and isinstance(content.get("metrics"), list):
            raw_definitions = content["metrics"]
        else:
            raise InvalidConfigurationError(
                f"{path} must contain a list of definitions or a 'metrics' list"
            )
        return cls.from_dicts(raw_definitions)
