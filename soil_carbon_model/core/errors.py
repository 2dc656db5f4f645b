"""
Error taxonomy and exclusion bookkeeping for the soil carbon engines.

Record-level problems are collected in an ExclusionReport so a batch can
continue; structural problems are raised as one of the typed errors below
before any computation starts.
"""

from collections import OrderedDict
from typing import Dict, Iterable, List, Optional

import pandas as pd

from shared_utils import get_logger


class CarbonAssessmentError(Exception):
    """Base class for all soil carbon engine errors."""


class ValidationError(CarbonAssessmentError):
    """Malformed or out-of-domain field values."""

    def __init__(self, message: str, identifiers: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.identifiers = list(identifiers) if identifiers is not None else []


class InsufficientDataError(CarbonAssessmentError):
    """Fewer points than required to fit a profile or to fuse rasters."""


class AlignmentError(CarbonAssessmentError):
    """Spatial grids that cannot be reconciled by resampling."""


class UnitError(CarbonAssessmentError):
    """Unrecognized or mismatched unit-conversion request."""


class AllocationError(CarbonAssessmentError):
    """Non-positive sample budget or no strata configured."""


class ExclusionReport:
    """
    Tally of excluded records, cores or cells grouped by reason.

    Keeps a bounded number of example identifiers per reason so that large
    batches stay auditable without storing every identifier.
    """

    def __init__(self, stage: str, max_examples: int = 5):
        self.stage = stage
        self.max_examples = max_examples
        self._counts: Dict[str, int] = OrderedDict()
        self._examples: Dict[str, List[str]] = OrderedDict()

    def add(self, reason: str, identifier=None, count: int = 1) -> None:
        """Record `count` exclusions for `reason`, keeping `identifier` as an example."""
        self._counts[reason] = self._counts.get(reason, 0) + count
        examples = self._examples.setdefault(reason, [])
        if identifier is not None and len(examples) < self.max_examples:
            identifier = str(identifier)
            if identifier not in examples:
                examples.append(identifier)

    def merge(self, other: 'ExclusionReport') -> None:
        for reason, count in other._counts.items():
            examples = other._examples.get(reason, [])
            self.add(reason, examples[0] if examples else None, count)
            for identifier in examples[1:]:
                self.add(reason, identifier, 0)

    @property
    def total(self) -> int:
        return sum(self._counts.values())

    def count(self, reason: str) -> int:
        return self._counts.get(reason, 0)

    def examples(self, reason: str) -> List[str]:
        return list(self._examples.get(reason, []))

    def __bool__(self) -> bool:
        return self.total > 0

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                'stage': self.stage,
                'reason': reason,
                'count': count,
                'examples': ';'.join(self._examples.get(reason, []))
            }
            for reason, count in self._counts.items()
        ]
        return pd.DataFrame(rows, columns=['stage', 'reason', 'count', 'examples'])

    def log_summary(self, logger=None) -> None:
        logger = logger or get_logger('soil_carbon_model.errors')
        if not self:
            logger.info(f"{self.stage}: no exclusions")
            return
        logger.warning(f"{self.stage}: {self.total} exclusions")
        for reason, count in self._counts.items():
            examples = ', '.join(self._examples.get(reason, []))
            logger.warning(f"  {reason}: {count} (e.g. {examples})")
