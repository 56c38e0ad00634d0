"""Error taxonomy for merchsim.

Fatal: ConfigError, DataError, InvariantError.
Non-fatal (absorbed into per-request classification): TransportError,
RequestOutcomeFailure.
"""

from merchsim.exceptions.base import (
    ConfigError,
    DataError,
    InvariantError,
    MerchSimError,
    RequestOutcomeFailure,
    TransportError,
)

FATAL_ERRORS = (ConfigError, DataError, InvariantError)

__all__ = [
    "MerchSimError",
    "ConfigError",
    "DataError",
    "InvariantError",
    "TransportError",
    "RequestOutcomeFailure",
    "FATAL_ERRORS",
]
