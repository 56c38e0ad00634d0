"""Weighted action selection, request construction and outcome checks."""

from __future__ import annotations

import json
from random import Random
from typing import Sequence
from urllib.parse import quote

from merchsim.core.dataset import Dataset
from merchsim.core.models import (
    Action,
    ActionKind,
    ActionWeight,
    BuyItem,
    FetchInfo,
    Request,
    Response,
    SendCoin,
)
from merchsim.core.sampling import sample_excluding
from merchsim.exceptions import ConfigError, InvariantError, RequestOutcomeFailure

# 75% info lookups, 15% purchases, 10% transfers.
DEFAULT_WEIGHTS: tuple[ActionWeight, ...] = (
    ActionWeight(0.75, ActionKind.FETCH_INFO),
    ActionWeight(0.90, ActionKind.BUY_ITEM),
    ActionWeight(1.0, ActionKind.SEND_COIN),
)

ITEM_CATALOG: tuple[str, ...] = ("cup", "book", "pen", "socks", "wallet")

MIN_AMOUNT = 1
MAX_AMOUNT = 25

NOT_ENOUGH_COIN = "not enough coin"


class ActionSelector:
    """Maps a uniform draw onto a cumulative weight table and builds the action."""

    def __init__(
        self,
        weights: Sequence[ActionWeight] = DEFAULT_WEIGHTS,
        *,
        items: Sequence[str] = ITEM_CATALOG,
        min_amount: int = MIN_AMOUNT,
        max_amount: int = MAX_AMOUNT,
    ) -> None:
        _validate_weights(weights)
        if not items:
            raise ConfigError("EMPTY_ITEM_CATALOG", "item catalog must be non-empty")
        if min_amount < 1 or max_amount < min_amount:
            raise ConfigError(
                "INVALID_AMOUNT_RANGE",
                "transfer amounts must satisfy 1 <= min_amount <= max_amount",
                {"min_amount": min_amount, "max_amount": max_amount},
            )

        self._weights = tuple(weights)
        self._items = tuple(items)
        self._min_amount = min_amount
        self._max_amount = max_amount

    @property
    def kinds(self) -> frozenset[ActionKind]:
        return frozenset(w.kind for w in self._weights)

    def select(self, rand: float) -> ActionKind:
        """Return the first kind whose upper bound exceeds ``rand``."""
        if not 0.0 <= rand < 1.0:
            raise InvariantError("DRAW_OUT_OF_RANGE", "rand must be in [0, 1)", {"rand": rand})
        for weight in self._weights:
            if rand < weight.upper_bound:
                return weight.kind
        # Unreachable: the last bound is 1.0 and rand < 1.0.
        raise InvariantError("DRAW_NOT_COVERED", "weight table does not cover rand", {"rand": rand})

    def build(self, kind: ActionKind, user_index: int, dataset: Dataset, rng: Random) -> Action:
        if kind == ActionKind.FETCH_INFO:
            return FetchInfo()
        if kind == ActionKind.BUY_ITEM:
            return BuyItem(item_name=rng.choice(self._items))
        if kind == ActionKind.SEND_COIN:
            to_index = sample_excluding(len(dataset), user_index, rng)
            return SendCoin(
                to_username=dataset.users[to_index].username,
                amount=rng.randint(self._min_amount, self._max_amount),
            )
        raise InvariantError("UNKNOWN_ACTION", f"unsupported action kind: {kind!r}")


def _validate_weights(weights: Sequence[ActionWeight]) -> None:
    if not weights:
        raise ConfigError("EMPTY_WEIGHT_TABLE", "weight table must be non-empty")

    previous = 0.0
    for weight in weights:
        if weight.upper_bound <= previous:
            raise ConfigError(
                "INVALID_WEIGHT_TABLE",
                "upper bounds must be strictly increasing and positive",
                {"kind": weight.kind.value, "upper_bound": weight.upper_bound},
            )
        previous = weight.upper_bound

    if previous != 1.0:
        raise ConfigError(
            "INVALID_WEIGHT_TABLE",
            "last upper bound must be 1.0",
            {"upper_bound": previous},
        )


def build_request(action: Action, base_url: str, token: str) -> Request:
    base = base_url.rstrip("/")
    headers = {"Authorization": f"Bearer {token}"}

    if isinstance(action, FetchInfo):
        return Request(method="GET", url=f"{base}/api/info", headers=headers)
    if isinstance(action, BuyItem):
        return Request(method="GET", url=f"{base}/api/buy/{quote(action.item_name, safe='')}", headers=headers)
    if isinstance(action, SendCoin):
        body = json.dumps({"toUser": action.to_username, "amount": action.amount}).encode("utf-8")
        return Request(
            method="POST",
            url=f"{base}/api/sendCoin",
            headers={**headers, "Content-Type": "application/json"},
            body=body,
        )
    raise InvariantError("UNKNOWN_ACTION", f"unsupported action: {action!r}")


def classify_response(kind: ActionKind, status: int, body: str) -> str | None:
    """Return None when the response passes for ``kind``, else an error_type.

    Info lookups pass only on 200. Purchases and transfers also pass on a
    400 whose body reports insufficient balance.
    """
    if status == 200:
        return None
    if kind != ActionKind.FETCH_INFO and status == 400 and NOT_ENOUGH_COIN in body:
        return None
    return _classify_http_error(status) or "unexpected_status"


def check_response(kind: ActionKind, response: Response) -> None:
    """Raise RequestOutcomeFailure if ``response`` does not pass for ``kind``."""
    error_type = classify_response(kind, response.status, response.text)
    if error_type is not None:
        raise RequestOutcomeFailure(
            error_type,
            f"{kind.value} check failed with status {response.status}",
            {"status": response.status},
        )


def _classify_http_error(status_code: int) -> str | None:
    """Map an HTTP status code to a canonical error_type, or None if success."""
    if 200 <= status_code < 400:
        return None
    if status_code == 401:
        return "auth_unauthorized"
    if status_code == 403:
        return "auth_forbidden"
    if status_code == 404:
        return "not_found"
    if status_code == 429:
        return "rate_limited"
    if 400 <= status_code < 500:
        return "client_error"
    if 500 <= status_code < 600:
        return "server_error"
    return f"http_{status_code}"
