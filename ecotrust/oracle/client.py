"""
HTTP client for the external eco-score oracle.

Contains:
- OracleConfig: dataclass for endpoint configuration
- call_oracle(): one POST to the oracle, failures mapped to OracleError subclasses
- parse_oracle_payload(): validate a decoded response body

Usage:
    from ecotrust.oracle.client import call_oracle, parse_oracle_payload

    payload = call_oracle("ChIJN1t_tDeuEmsRUsoyG83frY4")
    result = parse_oracle_payload(payload, categories)
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import requests

from ecotrust.config import ORACLE_URL, ORACLE_API_KEY, ORACLE_TIMEOUT
from ecotrust.errors import (
    MalformedOracleResponseError,
    OracleError,
    OracleRateLimitError,
    OracleTimeoutError,
)
from ecotrust.models import MIN_SCORE, MAX_SCORE, MIN_CONFIDENCE, MAX_CONFIDENCE

logger = logging.getLogger(__name__)


@dataclass
class OracleConfig:
    """Configuration for oracle requests."""
    url: str = ORACLE_URL
    api_key: str = ORACLE_API_KEY
    timeout: float = ORACLE_TIMEOUT


@dataclass
class OracleResult:
    """Validated oracle answer for one place."""
    category_scores: dict
    confidence_level: int
    reviews_analyzed: int = 0
    keyword_matches: int = 0


def call_oracle(
    external_place_ref: str,
    timeout: Optional[float] = None,
    config: Optional[OracleConfig] = None,
    session: Optional[requests.Session] = None,
) -> dict:
    """
    Ask the oracle to score one place.

    Args:
        external_place_ref: Provider place id (e.g. a Google place_id)
        timeout: Per-call timeout in seconds (default: config.timeout)
        config: Optional OracleConfig for custom settings
        session: Optional requests.Session for connection reuse

    Returns:
        Decoded JSON body (dict)

    Raises:
        OracleTimeoutError, OracleRateLimitError, MalformedOracleResponseError,
        OracleError
    """
    if config is None:
        config = OracleConfig()
    if timeout is None:
        timeout = config.timeout

    headers = {"Content-Type": "application/json"}
    if config.api_key:
        headers["Authorization"] = f"Bearer {config.api_key}"

    http = session or requests
    try:
        response = http.post(
            config.url,
            json={"placeId": external_place_ref},
            headers=headers,
            timeout=timeout,
        )
    except requests.exceptions.Timeout as e:
        raise OracleTimeoutError(f"Oracle timed out after {timeout:g}s") from e
    except requests.exceptions.RequestException as e:
        raise OracleError(f"Oracle unreachable: {e}") from e

    if response.status_code == 429:
        retry_after = response.headers.get("Retry-After")
        suffix = f" (retry after {retry_after}s)" if retry_after else ""
        raise OracleRateLimitError(f"Oracle rate limit exceeded{suffix}")
    if response.status_code >= 400:
        raise OracleError(f"Oracle returned HTTP {response.status_code}")

    try:
        payload = response.json()
    except ValueError as e:
        raise MalformedOracleResponseError("Oracle response is not valid JSON") from e

    if not isinstance(payload, dict):
        raise MalformedOracleResponseError("Oracle response is not a JSON object")

    # Some deployments wrap the body as {"success": true, "data": {...}}
    if isinstance(payload.get("data"), dict):
        if payload.get("success") is False:
            raise OracleError(f"Oracle reported failure: {payload.get('message', 'unknown error')}")
        payload = payload["data"]

    logger.debug(f"Oracle answered for {external_place_ref}: {list(payload)}")
    return payload


def _first(payload: dict, *keys, default=None):
    for key in keys:
        if key in payload:
            return payload[key]
    return default


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)


def _non_negative_int(value, field_name: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0 or value != int(value):
        raise MalformedOracleResponseError(f"Invalid {field_name}: {value!r}")
    return int(value)


def parse_oracle_payload(payload: dict, categories: tuple) -> OracleResult:
    """
    Validate a decoded oracle body against the listing's category set.

    Accepted shapes:
        {"scores": {"energy_efficiency": 4.0, ...} | {"energyEfficiencyScore": 4.0, ...},
         "confidenceLevel": 3, "reviewsAnalyzed": 40, "keywordMatches": 12}
    Metadata may also be nested under "metadata". Categories outside
    `categories` are ignored; missing categories are recorded as absent.

    Raises:
        MalformedOracleResponseError
    """
    if not isinstance(payload, dict):
        raise MalformedOracleResponseError("Oracle payload is not an object")

    raw_scores = _first(payload, "category_scores", "categoryScores", "scores")
    if not isinstance(raw_scores, dict):
        raise MalformedOracleResponseError("Oracle payload has no scores object")

    meta = payload.get("metadata") if isinstance(payload.get("metadata"), dict) else payload

    scores = {}
    for name in categories:
        value = _first(raw_scores, name, _camel(name), f"{_camel(name)}Score")
        if value is None:
            scores[name] = None
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
            raise MalformedOracleResponseError(f"Score for {name} is not a number: {value!r}")
        if not MIN_SCORE <= value <= MAX_SCORE:
            raise MalformedOracleResponseError(f"Score for {name} out of range: {value}")
        scores[name] = float(value)

    ignored = set(raw_scores) - {
        key for name in categories for key in (name, _camel(name), f"{_camel(name)}Score")
    }
    if ignored:
        logger.debug(f"Ignoring oracle categories outside this listing kind: {sorted(ignored)}")

    confidence = _first(meta, "confidence_level", "confidenceLevel")
    if (
        isinstance(confidence, bool)
        or not isinstance(confidence, (int, float))
        or math.isnan(confidence)
        or not MIN_CONFIDENCE <= confidence <= MAX_CONFIDENCE
    ):
        raise MalformedOracleResponseError(f"Invalid confidence level: {confidence!r}")

    return OracleResult(
        category_scores=scores,
        # Upstream reports half steps (3.5); stored levels are whole numbers
        confidence_level=math.floor(confidence + 0.5),
        reviews_analyzed=_non_negative_int(
            _first(meta, "reviews_analyzed", "reviewsAnalyzed"), "reviews_analyzed"
        ),
        keyword_matches=_non_negative_int(
            _first(meta, "keyword_matches", "keywordMatches"), "keyword_matches"
        ),
    )
