from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from merchsim.core.models import UserRecord
from merchsim.exceptions import ConfigError, DataError


@dataclass(frozen=True)
class Dataset:
    """Users and their auth tokens, index-aligned.

    Loaded once before any virtual user starts and shared by reference;
    there is no write path after construction.
    """

    users: tuple[UserRecord, ...]
    auth_tokens: tuple[str, ...]

    def __post_init__(self) -> None:
        if len(self.users) != len(self.auth_tokens):
            raise DataError(
                "DATASET_LENGTH_MISMATCH",
                "users and auth tokens must have the same length",
                {"users": len(self.users), "auth_tokens": len(self.auth_tokens)},
            )
        if not self.users:
            raise DataError("DATASET_EMPTY", "dataset must contain at least one user")

    def __len__(self) -> int:
        return len(self.users)


def load_dataset(users_path: str | None, tokens_path: str | None) -> Dataset:
    """Load the users file and the auth token file.

    Expected shapes:
      users:  [{"username": "u0", "password": "..."}, ...]
      tokens: ["<jwt for u0>", ...]

    Both paths must be absolute.
    """

    users_file = _require_absolute(users_path, "users_file")
    tokens_file = _require_absolute(tokens_path, "auth_tokens_file")

    raw_users = _read_json(users_file)
    raw_tokens = _read_json(tokens_file)

    if not isinstance(raw_users, list):
        raise DataError("INVALID_USERS_FILE", "users file must contain a JSON array", {"path": str(users_file)})
    if not isinstance(raw_tokens, list):
        raise DataError("INVALID_TOKENS_FILE", "auth token file must contain a JSON array", {"path": str(tokens_file)})

    users: list[UserRecord] = []
    for i, raw in enumerate(raw_users):
        if not isinstance(raw, dict):
            raise DataError("INVALID_USER_RECORD", "user record must be an object", {"index": i})
        username = raw.get("username")
        if not isinstance(username, str) or not username:
            raise DataError("INVALID_USER_RECORD", "user record must have a non-empty username", {"index": i})
        extra = {k: v for k, v in raw.items() if k != "username"}
        users.append(UserRecord(username=username, extra=extra))

    for i, token in enumerate(raw_tokens):
        if not isinstance(token, str) or not token:
            raise DataError("INVALID_AUTH_TOKEN", "auth token must be a non-empty string", {"index": i})

    return Dataset(users=tuple(users), auth_tokens=tuple(raw_tokens))


def _require_absolute(raw: str | None, name: str) -> Path:
    if not raw or not raw.strip():
        raise ConfigError("MISSING_PATH", f"{name} is empty", {"name": name})
    path = Path(raw.strip())
    if not path.is_absolute():
        raise ConfigError("RELATIVE_PATH", f"{name} must be an absolute path", {"name": name, "path": raw})
    return path


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise DataError("UNREADABLE_FILE", f"cannot read {path}: {exc.strerror}", {"path": str(path)}) from exc
    except json.JSONDecodeError as exc:
        raise DataError("INVALID_JSON", f"{path} is not valid JSON: {exc.msg}", {"path": str(path)}) from exc
