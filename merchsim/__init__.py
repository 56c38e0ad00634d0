"""Load-generation harness for the merch service.

Virtual users repeatedly pick weighted actions (info lookup, item purchase,
coin transfer) against the HTTP API while a ramp scheduler varies how many
of them are active. Outcomes are aggregated and gated by thresholds.
"""

from __future__ import annotations

__all__ = []
