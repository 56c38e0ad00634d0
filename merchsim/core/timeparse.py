from __future__ import annotations

import re

from merchsim.core.models import RampStage
from merchsim.exceptions import ConfigError

_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}

_DURATION_RE = re.compile(r"^(?:\d+(?:\.\d+)?(?:ms|s|m|h))+$")
_PART_RE = re.compile(r"(?P<value>\d+(?:\.\d+)?)(?P<unit>ms|s|m|h)")


def parse_duration_to_seconds(raw: str) -> float:
    """Parse duration strings like '500ms', '10s', '2m', '1m30s' into seconds."""
    text = raw.strip()
    if not _DURATION_RE.match(text):
        raise ConfigError(
            "INVALID_DURATION",
            "duration must match <number><unit>[<number><unit>...] where unit is ms|s|m|h",
            {"provided": raw},
        )

    return sum(
        float(part.group("value")) * _UNIT_SECONDS[part.group("unit")]
        for part in _PART_RE.finditer(text)
    )


def parse_stage(raw: str) -> RampStage:
    """Parse a ramp stage written as ``<duration>:<target>``, e.g. ``2m:15``."""
    duration, sep, target = raw.strip().rpartition(":")
    if not sep or not duration:
        raise ConfigError(
            "INVALID_STAGE",
            "stage must be written as <duration>:<target>",
            {"provided": raw},
        )

    try:
        target_vus = int(target)
    except ValueError:
        raise ConfigError(
            "INVALID_STAGE",
            "stage target must be an integer",
            {"provided": raw},
        ) from None

    return RampStage(duration_seconds=parse_duration_to_seconds(duration), target=target_vus)
