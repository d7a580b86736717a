"""
Configuration for the orchestration service.

OrchestratorConfig gathers every tunable of the core in one frozen
dataclass. Use the predefined presets or build one from the environment:

    config = OrchestratorConfig.DEFAULT
    config = OrchestratorConfig.from_env()   # GRANTFLOW_* overrides

Recognised environment variables:
    GRANTFLOW_SEARCH_BUDGET        seconds (float), default 5
    GRANTFLOW_COMPLIANCE_BUDGET    seconds (float), default 30
    GRANTFLOW_GENERATION_BUDGET    seconds (float), default 60
    GRANTFLOW_RETRY_MAX_ATTEMPTS   int, default 4
    GRANTFLOW_RETRY_INITIAL_MS     int, default 100
    GRANTFLOW_RETRY_MAX_MS         int, default 5000
    GRANTFLOW_CIRCUIT_FAILURES     int, default 5
    GRANTFLOW_CIRCUIT_WINDOW       seconds (float), default 60
    GRANTFLOW_CIRCUIT_OPEN_TIMEOUT seconds (float), default 30
    GRANTFLOW_SEARCH_K             int, default 20
    GRANTFLOW_SHORTLIST_LIMIT      int, default 5
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, TypeVar, cast

from grantflow.core.circuit import CircuitBreakerConfig
from grantflow.core.retry import RetryPolicy
from grantflow.ranking import DEFAULT_SEARCH_BUDGET, ScoringWeights

logger = logging.getLogger(__name__)

N = TypeVar("N", int, float)

ENV_PREFIX = "GRANTFLOW_"


@dataclass(frozen=True)
class OrchestratorConfig:
    retry_policy: RetryPolicy = RetryPolicy.STANDARD
    circuit: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)

    search_k: int = 20
    shortlist_limit: int = 5
    shortlist_min: int = 3
    weights: ScoringWeights = field(default_factory=ScoringWeights)

    expiring_window_days: int = 30
    min_confidence: float = 0.90

    search_budget: float = DEFAULT_SEARCH_BUDGET
    """Wall-clock budget (seconds) for search-class workflows."""

    compliance_budget: float = 30.0
    """Wall-clock budget (seconds) for compliance-check workflows."""

    generation_budget: float = 60.0
    """Wall-clock budget (seconds) for generation-class workflows."""

    draft_max_words: int = 1500

    if TYPE_CHECKING:
        DEFAULT: OrchestratorConfig
        TESTING: OrchestratorConfig
    else:
        DEFAULT = cast("OrchestratorConfig", None)
        TESTING = cast("OrchestratorConfig", None)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> OrchestratorConfig:
        """
        Build a config from GRANTFLOW_* environment variables.

        Unset variables keep their defaults; malformed values are logged and
        ignored.
        """
        env = os.environ if env is None else env
        base = cls()

        retry = RetryPolicy(
            max_attempts=_read(env, "RETRY_MAX_ATTEMPTS", int, base.retry_policy.max_attempts),
            initial_delay_ms=_read(
                env, "RETRY_INITIAL_MS", int, base.retry_policy.initial_delay_ms
            ),
            max_delay_ms=_read(env, "RETRY_MAX_MS", int, base.retry_policy.max_delay_ms),
            backoff_multiplier=base.retry_policy.backoff_multiplier,
        )
        circuit = replace(
            base.circuit,
            failure_threshold=_read(
                env, "CIRCUIT_FAILURES", int, base.circuit.failure_threshold
            ),
            failure_window=_read(env, "CIRCUIT_WINDOW", float, base.circuit.failure_window),
            open_timeout=_read(env, "CIRCUIT_OPEN_TIMEOUT", float, base.circuit.open_timeout),
        )
        return replace(
            base,
            retry_policy=retry,
            circuit=circuit,
            search_k=_read(env, "SEARCH_K", int, base.search_k),
            shortlist_limit=_read(env, "SHORTLIST_LIMIT", int, base.shortlist_limit),
            search_budget=_read(env, "SEARCH_BUDGET", float, base.search_budget),
            compliance_budget=_read(env, "COMPLIANCE_BUDGET", float, base.compliance_budget),
            generation_budget=_read(env, "GENERATION_BUDGET", float, base.generation_budget),
        )


def _read(env: Mapping[str, str], name: str, parse: Callable[[str], N], default: N) -> N:
    raw = env.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return parse(raw)
    except ValueError:
        logger.warning(f"Ignoring malformed {ENV_PREFIX}{name}={raw!r}, using {default}")
        return default


OrchestratorConfig.DEFAULT = OrchestratorConfig()

OrchestratorConfig.TESTING = OrchestratorConfig(
    retry_policy=RetryPolicy(
        max_attempts=4, initial_delay_ms=0, max_delay_ms=0, backoff_multiplier=2.0
    ),
    search_budget=2.0,
    compliance_budget=2.0,
    generation_budget=2.0,
)
