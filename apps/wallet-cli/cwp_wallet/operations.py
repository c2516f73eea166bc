"""CWP operations and the request/response shapes each one accepts."""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from Crypto.Hash import keccak

POLICY_TYPES = ("value-limit", "recipient-allowlist", "call-limit")


class Operation(str, Enum):
    INFO = "info"
    ACCOUNTS = "accounts"
    SIGN_MESSAGE = "sign-message"
    SIGN_TYPED_DATA = "sign-typed-data"
    SIGN_TRANSACTION = "sign-transaction"
    SEND_TRANSACTION = "send-transaction"
    GRANT_SESSION = "grant-session"
    REVOKE_SESSION = "revoke-session"
    GET_SESSION = "get-session"

    @property
    def is_provider_operation(self) -> bool:
        return self not in SESSION_OPERATIONS


SESSION_OPERATIONS = frozenset({Operation.GRANT_SESSION, Operation.REVOKE_SESSION, Operation.GET_SESSION})


class InvalidInputError(Exception):
    """Request payload is missing fields or has the wrong shape."""


def is_hex_address(value: str) -> bool:
    return bool(re.fullmatch(r"0x[a-fA-F0-9]{40}", value))


def to_checksum_address(address: str) -> str:
    body = address[2:].lower()
    digest = keccak.new(digest_bits=256)
    digest.update(body.encode("ascii"))
    hashed = digest.hexdigest()
    return "0x" + "".join(ch.upper() if int(hashed[i], 16) >= 8 else ch for i, ch in enumerate(body))


def _check_address(field_name: str, value: str) -> None:
    if not is_hex_address(value):
        return
    body = value[2:]
    if body == body.lower() or body == body.upper():
        return
    if value != to_checksum_address(value):
        raise InvalidInputError(f"Invalid EIP-55 checksum for {field_name}: {value}")


def _require(payload: dict[str, Any], *fields: str) -> None:
    missing = [name for name in fields if payload.get(name) in (None, "")]
    if missing:
        raise InvalidInputError(f"Missing {', '.join(missing)}")


def _require_str(payload: dict[str, Any], name: str) -> str:
    value = payload.get(name)
    if not isinstance(value, str):
        raise InvalidInputError(f"Field '{name}' must be a string")
    return value


def _require_object(payload: dict[str, Any], name: str) -> dict[str, Any]:
    value = payload.get(name)
    if not isinstance(value, dict):
        raise InvalidInputError(f"Field '{name}' must be an object")
    return value


def _is_uint(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value >= 0
    return isinstance(value, str) and bool(re.fullmatch(r"[0-9]+", value))


def _validate_policy(policy: Any, index: int) -> None:
    if not isinstance(policy, dict):
        raise InvalidInputError(f"Policy {index} must be an object")
    policy_type = policy.get("type")
    if policy_type not in POLICY_TYPES:
        raise InvalidInputError(f"Unknown policy type: {policy_type}")
    params = policy.get("params")
    if not isinstance(params, dict):
        raise InvalidInputError(f"Policy {policy_type} requires a params object")
    if policy_type == "value-limit":
        if not _is_uint(params.get("maxValue")):
            raise InvalidInputError("value-limit maxValue must be a non-negative integer")
    elif policy_type == "recipient-allowlist":
        addresses = params.get("addresses")
        if not isinstance(addresses, list) or not all(isinstance(a, str) for a in addresses):
            raise InvalidInputError("recipient-allowlist addresses must be a list of strings")
    else:
        if not isinstance(params.get("operation"), str) or not params["operation"]:
            raise InvalidInputError("call-limit operation must be a string")
        max_calls = params.get("maxCalls")
        if isinstance(max_calls, bool) or not isinstance(max_calls, int) or max_calls < 0:
            raise InvalidInputError("call-limit maxCalls must be a non-negative integer")


def _validate_permissions(permissions: Any) -> None:
    if not isinstance(permissions, list):
        raise InvalidInputError("Field 'permissions' must be a list")
    for entry in permissions:
        if not isinstance(entry, dict) or not isinstance(entry.get("operation"), str):
            raise InvalidInputError("Each permission needs an operation string")
        policies = entry.get("policies")
        if policies is None:
            continue
        if not isinstance(policies, list):
            raise InvalidInputError(f"Policies for {entry['operation']} must be a list")
        for index, policy in enumerate(policies):
            _validate_policy(policy, index)


def _validate_transaction_request(payload: dict[str, Any]) -> None:
    _require(payload, "account", "transaction", "chain")
    _check_address("account", _require_str(payload, "account"))
    _require_str(payload, "chain")
    transaction = _require_object(payload, "transaction")
    to = transaction.get("to")
    if isinstance(to, str):
        _check_address("transaction.to", to)


def validate_request(operation: Operation, payload: Any) -> dict[str, Any] | None:
    """Check a request before anything is spawned; return it unchanged."""
    if payload is not None and not isinstance(payload, dict):
        raise InvalidInputError("Request must be a JSON object")

    if payload is None:
        if operation in (Operation.INFO, Operation.ACCOUNTS):
            return None
        payload = {}

    if operation == Operation.SIGN_MESSAGE:
        _require(payload, "account", "message")
        _check_address("account", _require_str(payload, "account"))
        _require_str(payload, "message")
    elif operation == Operation.SIGN_TYPED_DATA:
        _require(payload, "account", "typedData")
        _check_address("account", _require_str(payload, "account"))
        typed_data = _require_object(payload, "typedData")
        missing = [k for k in ("domain", "types", "primaryType", "message") if k not in typed_data]
        if missing:
            raise InvalidInputError(f"typedData missing {', '.join(missing)}")
    elif operation in (Operation.SIGN_TRANSACTION, Operation.SEND_TRANSACTION):
        _validate_transaction_request(payload)
    elif operation == Operation.GRANT_SESSION:
        _require(payload, "account", "chain", "permissions", "expiry")
        _check_address("account", _require_str(payload, "account"))
        _require_str(payload, "chain")
        _validate_permissions(payload["permissions"])
        expiry = payload["expiry"]
        if isinstance(expiry, bool) or not isinstance(expiry, int) or expiry <= 0:
            raise InvalidInputError("Field 'expiry' must be a positive integer (ms since epoch)")
    elif operation in (Operation.REVOKE_SESSION, Operation.GET_SESSION):
        _require(payload, "sessionId")
        _require_str(payload, "sessionId")

    session_id = payload.get("sessionId")
    if session_id is not None and not isinstance(session_id, str):
        raise InvalidInputError("Field 'sessionId' must be a string")
    return payload


def validate_info_response(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise InvalidInputError("expected a JSON object")
    for name in ("name", "version"):
        if not isinstance(raw.get(name), str):
            raise InvalidInputError(f"'{name}' must be a string")
    for name in ("capabilities", "chains"):
        value = raw.get(name)
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise InvalidInputError(f"'{name}' must be a list of strings")
    for name in ("rdns", "protocolVersion"):
        if name in raw and not isinstance(raw[name], str):
            raise InvalidInputError(f"'{name}' must be a string")
    return raw
