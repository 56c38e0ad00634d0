from __future__ import annotations

from typing import Any

from merchsim.core.models import SimulationConfig, SimulationResult


def build_simulation_report(config: SimulationConfig, result: SimulationResult) -> dict[str, Any]:
    config_payload = {
        "base_url": config.base_url,
        "users_file": config.users_file,
        "auth_tokens_file": config.auth_tokens_file,
        "stages": [
            {"duration_seconds": s.duration_seconds, "target": s.target} for s in config.stages
        ],
        "thresholds": [
            {"metric": t.metric.value, "predicate": t.predicate} for t in config.thresholds
        ],
        "think_time_seconds": config.think_time_seconds,
        "tick_seconds": config.tick_seconds,
        "timeout_seconds": config.timeout_seconds,
        "seed": config.seed,
    }
    return {
        "config": config_payload,
        "result": {
            "verdict": result.verdict.verdict.value,
            "request_count": result.request_count,
            "error_count": result.error_count,
            "peak_vus": result.peak_vus,
            "duration_seconds": result.duration_seconds,
            "throughput_rps": result.throughput_rps,
        },
        "thresholds": [
            {
                "metric": r.threshold.metric.value,
                "predicate": r.threshold.predicate,
                "observed": r.observed,
                "passed": r.passed,
                "insufficient_data": r.insufficient_data,
            }
            for r in result.verdict.results
        ],
        "metrics": result.metrics_report,
    }
