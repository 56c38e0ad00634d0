"""Pre-built scenarios.

Scenario modules expose a config builder plus an async runner for use from
tests and CI.
"""
