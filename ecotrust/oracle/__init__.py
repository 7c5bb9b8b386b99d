"""External eco-score oracle: interface and HTTP client."""
from .backend import ScoreOracle, HttpScoreOracle
from .client import OracleConfig, OracleResult, call_oracle, parse_oracle_payload

__all__ = [
    'ScoreOracle', 'HttpScoreOracle',
    'OracleConfig', 'OracleResult', 'call_oracle', 'parse_oracle_payload',
]
