"""
Observation ingestion from the metric feed.

Supports JSON (array or NDJSON) and CSV observation files plus in-memory
iterables of dictionaries. Every source yields raw dictionaries; validation
into Observation objects happens in ``parse_observation`` so that one bad row
never stops the rest of the feed.

Design:
- Format detection from the file extension or explicit format specification
- Iterator-based, rows are never all loaded into Observation objects at once
- Bad rows logged and skipped, not raised
"""

import csv
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from pydantic import ValidationError

from riskwatch.core.exceptions import IngestionError

from .schema import Observation

logger = logging.getLogger(__name__)


class BaseObservationSource(ABC):
    """
    Abstract base class for observation sources.

    Each file format implements this interface.
    """

    def __init__(self, filepath: Union[str, Path], encoding: str = "utf-8"):
        """
        Initialize observation source.

        Args:
            filepath: Path to the feed file
            encoding: File encoding (default utf-8)

        Raises:
            IngestionError: If file doesn't exist
        """
        self.filepath = Path(filepath)
        self.encoding = encoding

        if not self.filepath.exists():
            raise IngestionError(f"Observation file not found: {self.filepath}")

    @abstractmethod
    def ingest(self) -> Iterator[Dict[str, Any]]:
        """
        Read raw observations from the source.

        Yields:
            Dict with at least id/value/timestamp keys (not yet validated)
        """
        pass


class JSONObservationSource(BaseObservationSource):
    """
    Reads JSON observations (JSON array or one object per line).

    Example NDJSON:
        {"id": "error_rate", "value": 0.02, "timestamp": "2025-02-07T10:30:45Z"}
        {"id": "latency_p95", "value": 245, "timestamp": "2025-02-07T10:30:45Z"}
    """

    def ingest(self) -> Iterator[Dict[str, Any]]:
        try:
            with open(self.filepath, "r", encoding=self.encoding) as f:
                content = f.read().lstrip("\ufeff").strip()
        except OSError as e:
            raise IngestionError(f"Failed to read JSON feed: {e}") from e

        if content.startswith("["):
            try:
                rows = json.loads(content)
            except json.JSONDecodeError as e:
                raise IngestionError(f"Invalid JSON array: {e}") from e

            for idx, row in enumerate(rows):
                if isinstance(row, dict):
                    yield row
                else:
                    logger.warning("Non-dict observation at index %d: %s", idx, type(row).__name__)
            return

        for line_num, line in enumerate(content.split("\n"), start=1):
            line = line.strip()
            if not line:
                continue
            try:
                row = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Malformed JSON at line %d: %s", line_num, line[:100])
                continue
            if isinstance(row, dict):
                yield row
            else:
                logger.warning("NDJSON line %d not a dict: %s", line_num, type(row).__name__)


class CSVObservationSource(BaseObservationSource):
    """
    Reads CSV observations with an id,value,timestamp header row.

    Example:
        id,value,timestamp
        error_rate,0.02,2025-02-07T10:30:45Z
    """

    def __init__(
        self,
        filepath: Union[str, Path],
        encoding: str = "utf-8",
        delimiter: str = ",",
    ):
        super().__init__(filepath, encoding)
        self.delimiter = delimiter

    def ingest(self) -> Iterator[Dict[str, Any]]:
        try:
            with open(self.filepath, "r", encoding=self.encoding, newline="") as f:
                reader = csv.DictReader(f, delimiter=self.delimiter)
                if reader.fieldnames is None:
                    raise IngestionError("CSV file is empty")

                # Normalize BOM in header if present
                reader.fieldnames = [name.lstrip("\ufeff") for name in reader.fieldnames]

                for line_num, row in enumerate(reader, start=2):
                    if all(v in (None, "") for v in row.values()):
                        logger.warning("Empty row at line %d", line_num)
                        continue
                    yield row
        except OSError as e:
            raise IngestionError(f"Failed to read CSV feed: {e}") from e


def read_observations(
    filepath: Union[str, Path],
    format: str = "auto",
) -> Iterator[Dict[str, Any]]:
    """
    Read raw observation rows from a file.

    Args:
        filepath: Path to the feed file
        format: "json", "csv", or "auto" to detect from the extension

    Raises:
        IngestionError: If file not found or format unsupported
    """
    filepath = Path(filepath)

    if format == "auto":
        suffix = filepath.suffix.lower()
        if suffix in (".json", ".ndjson", ".jsonl"):
            format = "json"
        elif suffix == ".csv":
            format = "csv"
        else:
            raise IngestionError(f"Cannot detect feed format for {filepath.name}")

    if format == "json":
        source: BaseObservationSource = JSONObservationSource(filepath)
    elif format == "csv":
        source = CSVObservationSource(filepath)
    else:
        raise IngestionError(f"Unknown format: {format}")

    yield from source.ingest()


@dataclass
class ParsedRow:
    """Outcome of validating one raw feed row."""

    metric_id: Optional[str]
    observation: Optional[Observation] = None
    error: Optional[str] = None


def parse_observation(raw: Dict[str, Any]) -> ParsedRow:
    """
    Validate a raw row into an Observation.

    The metric id is extracted even when validation fails so the caller can
    mark that metric as having a malformed observation.
    """
    metric_id = raw.get("id")
    metric_id = str(metric_id) if metric_id not in (None, "") else None

    try:
        observation = Observation.model_validate(
            {k: v for k, v in raw.items() if k in ("id", "value", "timestamp") and v != ""}
        )
    except ValidationError as exc:
        messages = "; ".join(
            f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()
        )
        return ParsedRow(metric_id=metric_id, error=messages)

    return ParsedRow(metric_id=observation.id, observation=observation)


@dataclass
class IngestionResult:
    """Summary of one ingestion batch."""

    accepted: int = 0
    malformed: int = 0
    unknown: int = 0
    stale: int = 0
    unknown_ids: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.accepted + self.malformed + self.unknown + self.stale

    def as_dict(self) -> Dict[str, Any]:
        return {
            "accepted": self.accepted,
            "malformed": self.malformed,
            "unknown": self.unknown,
            "stale": self.stale,
            "unknown_ids": list(self.unknown_ids),
        }
