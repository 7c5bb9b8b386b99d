"""
ScoreOracle abstraction.

The scoring algorithm itself lives outside this project. Recalculation only
depends on ScoreOracle.compute(); HttpScoreOracle is the production
implementation, tests plug in scripted fakes.

Usage:
    from ecotrust.oracle.backend import HttpScoreOracle

    oracle = HttpScoreOracle()
    result = oracle.compute("ChIJ...", categories, timeout=30)
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from .client import OracleConfig, OracleResult, call_oracle, parse_oracle_payload

logger = logging.getLogger(__name__)


class ScoreOracle(ABC):
    """Abstract scoring collaborator."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Oracle identifier, used in logs."""
        pass

    @abstractmethod
    def compute(self, external_place_ref: str, categories: tuple, timeout: float) -> OracleResult:
        """
        Score one place.

        Implementations should give up after `timeout` seconds and raise
        OracleError (or a subclass) for every kind of failure. Callers that
        cannot trust this, like RecalculationOrchestrator, also enforce the
        deadline themselves.
        """
        pass


class HttpScoreOracle(ScoreOracle):
    """Oracle reached over HTTP (see ecotrust.oracle.client)."""

    def __init__(self, config: Optional[OracleConfig] = None):
        self.config = config or OracleConfig()

    @property
    def name(self) -> str:
        return f"http:{self.config.url}"

    def compute(self, external_place_ref: str, categories: tuple, timeout: float) -> OracleResult:
        # One requests.post per call: calls arrive from many threads at once
        payload = call_oracle(external_place_ref, timeout=timeout, config=self.config)
        return parse_oracle_payload(payload, categories)
