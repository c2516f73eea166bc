"""Persisted session grants and their policy checks.

One JSON file per session lives under ``config.SESSIONS_DIR``. Writes go to a
temp file that replaces the session file; read-modify-write updates hold an
exclusive lock on ``<sessionId>.lock`` so concurrent invocations do not lose
call counts or value totals.
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import pathlib
import re
import secrets
import time
from typing import Any, Iterator

from cwp_wallet import config
from cwp_wallet.operations import Operation, validate_request

logger = logging.getLogger(__name__)

SESSION_ID_PATTERN = re.compile(r"[0-9a-f]{32}")


class SessionError(Exception):
    """The session does not authorize the requested operation."""

    code = "SESSION_ERROR"


class SessionNotFoundError(SessionError):
    """The session file is missing or unreadable."""

    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


def _now_ms() -> int:
    return int(time.time() * 1000)


def _session_path(session_id: str) -> pathlib.Path:
    if not SESSION_ID_PATTERN.fullmatch(session_id or ""):
        raise SessionNotFoundError(session_id)
    return config.SESSIONS_DIR / f"{session_id}.json"


def _ensure_sessions_dir() -> None:
    config.SESSIONS_DIR.mkdir(mode=0o700, parents=True, exist_ok=True)
    if os.name != "nt":
        os.chmod(config.SESSIONS_DIR, 0o700)


def _atomic_write(path: pathlib.Path, session: dict[str, Any]) -> None:
    _ensure_sessions_dir()
    tmp = pathlib.Path(f"{path}.{os.getpid()}.tmp")
    with open(tmp, "w", encoding="utf-8") as handle:
        handle.write(json.dumps(session, indent=2))
        handle.flush()
        os.fsync(handle.fileno())
    if os.name != "nt":
        os.chmod(tmp, 0o600)
    tmp.replace(path)


def _lock_file(handle) -> None:
    if os.name == "nt":
        import msvcrt

        msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, 1)  # type: ignore[attr-defined]
        return
    import fcntl

    fcntl.flock(handle.fileno(), fcntl.LOCK_EX)


def _unlock_file(handle) -> None:
    if os.name == "nt":
        import msvcrt

        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)  # type: ignore[attr-defined]
        return
    import fcntl

    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


@contextlib.contextmanager
def _session_lock(session_id: str) -> Iterator[None]:
    # Lock files are left in place; unlinking one could split waiters across two inodes.
    if not _session_path(session_id).is_file():
        raise SessionNotFoundError(session_id)
    _ensure_sessions_dir()
    lock_path = config.SESSIONS_DIR / f"{session_id}.lock"
    with open(lock_path, "a+", encoding="utf-8") as handle:
        _lock_file(handle)
        try:
            yield
        finally:
            _unlock_file(handle)


def grant_session(request: dict[str, Any]) -> dict[str, Any]:
    validate_request(Operation.GRANT_SESSION, request)
    session_id = secrets.token_hex(16)
    session = {
        "sessionId": session_id,
        "account": request["account"],
        "chain": request["chain"],
        "permissions": request["permissions"],
        "expiry": request["expiry"],
        "revoked": False,
        "callCounts": {},
        "totalValue": {},
    }
    _atomic_write(_session_path(session_id), session)
    logger.debug("granted session %s for %s", session_id, request["account"])
    return session


def load_session(session_id: str) -> dict[str, Any]:
    path = _session_path(session_id)
    try:
        session = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise SessionNotFoundError(session_id) from exc
    if not isinstance(session, dict):
        raise SessionNotFoundError(session_id)
    session.setdefault("callCounts", {})
    session.setdefault("totalValue", {})
    return session


def revoke_session(session_id: str) -> None:
    with _session_lock(session_id):
        session = load_session(session_id)
        session["revoked"] = True
        _atomic_write(_session_path(session_id), session)


def _transaction(request: dict[str, Any] | None) -> dict[str, Any] | None:
    if not request:
        return None
    tx = request.get("transaction")
    return tx if isinstance(tx, dict) else None


def _parse_value(raw: Any) -> int:
    """Parse a wei amount given as int, decimal string or 0x hex string."""
    if isinstance(raw, int) and not isinstance(raw, bool) and raw >= 0:
        return raw
    if isinstance(raw, str):
        text = raw.strip()
        if re.fullmatch(r"[0-9]+", text):
            return int(text)
        if re.fullmatch(r"0[xX][0-9a-fA-F]+", text):
            return int(text, 16)
    raise SessionError(f"Invalid transaction value: {raw}")


def _request_chain(request: dict[str, Any]) -> str:
    chain = request.get("chain")
    return chain if isinstance(chain, str) and chain else "unknown"


def _check_policy(policy: dict[str, Any], session: dict[str, Any], request: dict[str, Any] | None) -> None:
    policy_type = policy.get("type")
    params = policy.get("params") or {}

    if policy_type == "value-limit":
        tx = _transaction(request)
        if tx is None or tx.get("value") in (None, "", 0):
            return
        chain = _request_chain(request or {})
        max_value = _parse_value(params.get("maxValue"))
        current_total = int(session["totalValue"].get(chain, "0"))
        projected = current_total + _parse_value(tx["value"])
        if projected > max_value:
            raise SessionError(f"Value limit exceeded: {projected} > {max_value}")

    elif policy_type == "recipient-allowlist":
        tx = _transaction(request)
        if tx is None or not tx.get("to"):
            return
        allowlist = {str(address).lower() for address in params.get("addresses") or []}
        if str(tx["to"]).lower() not in allowlist:
            raise SessionError(f"Recipient {tx['to']} not in allowlist")

    elif policy_type == "call-limit":
        # Counts the operation named in the policy, not the one being validated.
        operation = params.get("operation")
        max_calls = params.get("maxCalls")
        current_calls = session["callCounts"].get(operation, 0)
        if current_calls >= max_calls:
            raise SessionError(f"Call limit reached for {operation}: {current_calls} >= {max_calls}")

    else:
        raise SessionError(f"Unknown policy type: {policy_type}")


def validate_session(
    session_id: str,
    operation: str,
    request: dict[str, Any] | None = None,
    now_ms: int | None = None,
) -> dict[str, Any]:
    """Raise SessionError unless the session allows ``operation`` with ``request``.

    Checks run in a fixed order: revocation, expiry, permission lookup, then
    each attached policy left to right. The first failure wins.
    """
    session = load_session(session_id)

    if session.get("revoked"):
        raise SessionError("Session has been revoked")

    if (now_ms if now_ms is not None else _now_ms()) > session.get("expiry", 0):
        raise SessionError("Session has expired")

    permission = next(
        (p for p in session.get("permissions") or [] if isinstance(p, dict) and p.get("operation") == operation),
        None,
    )
    if permission is None:
        raise SessionError(f"Session does not permit operation: {operation}")

    for policy in permission.get("policies") or []:
        _check_policy(policy, session, request)

    return session


def record_session_usage(session_id: str, operation: str, request: dict[str, Any] | None = None) -> None:
    with _session_lock(session_id):
        session = load_session(session_id)
        counts = session["callCounts"]
        counts[operation] = counts.get(operation, 0) + 1

        tx = _transaction(request)
        if tx is not None and tx.get("value") not in (None, "", 0):
            chain = _request_chain(request or {})
            current_total = int(session["totalValue"].get(chain, "0"))
            session["totalValue"][chain] = str(current_total + _parse_value(tx["value"]))

        _atomic_write(_session_path(session_id), session)
