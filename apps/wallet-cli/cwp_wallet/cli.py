#!/usr/bin/env python3
"""CWP wallet CLI.

Resolves a wallet provider executable from PATH, forwards one operation to it
and re-emits the provider's JSON answer. Session grants are kept locally and
checked before a provider is invoked on behalf of a session.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Any, Callable

from cwp_wallet import config, discovery, sessions
from cwp_wallet.config import ConfigError
from cwp_wallet.executor import (
    EXIT_GENERAL_ERROR,
    EXIT_SESSION_ERROR,
    EXIT_UNSUPPORTED,
    WalletExecError,
    wallet_exec,
)
from cwp_wallet.operations import InvalidInputError, Operation, validate_request
from cwp_wallet.selector import select_provider
from cwp_wallet.sessions import SessionError

logger = logging.getLogger(__name__)


def emit(payload: Any) -> int:
    print(json.dumps(payload, separators=(",", ":")))
    return 0


def fail(code: str, message: str, exit_code: int = EXIT_GENERAL_ERROR) -> int:
    emit({"error": message, "code": code})
    return exit_code


def _diag(message: str) -> None:
    print(message, file=sys.stderr)


def read_request() -> dict[str, Any] | None:
    stream = sys.stdin
    if stream is None or stream.isatty():
        return None
    raw = stream.read().strip()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise InvalidInputError("Invalid JSON input") from exc


def cmd_list(args: argparse.Namespace) -> int:
    providers = discovery.discover_providers()
    if not providers:
        return emit({"providers": [], "message": "No wallet providers found on PATH"})
    return emit({"providers": [provider.to_payload() for provider in providers]})


def _provider_operation(operation: Operation, args: argparse.Namespace, request: dict[str, Any] | None) -> int:
    chain = request.get("chain") if request else None
    provider = select_provider(
        capability=None if operation == Operation.INFO else operation.value,
        chain=chain if isinstance(chain, str) else None,
        wallet=args.wallet,
    )
    if provider is None:
        if args.wallet:
            return fail("INTERNAL_ERROR", f'Wallet provider "{args.wallet}" is not available')
        return fail("UNSUPPORTED_OPERATION", f"No wallet provider available for {operation.value}", EXIT_UNSUPPORTED)

    if operation == Operation.INFO:
        return emit(provider.info)

    if operation.value not in provider.capabilities:
        return fail(
            "UNSUPPORTED_OPERATION",
            f'Wallet provider "{provider.short_name}" does not support "{operation.value}". '
            f"Capabilities: {', '.join(provider.capabilities)}",
            EXIT_UNSUPPORTED,
        )

    session_id = request.get("sessionId") if request else None
    forwarded = request
    if session_id:
        sessions.validate_session(session_id, operation.value, request)
        forwarded = {k: v for k, v in request.items() if k != "sessionId"}

    result = wallet_exec(provider.path, operation.value, forwarded, config.operation_timeout_ms(operation.value))

    if session_id:
        sessions.record_session_usage(session_id, operation.value, request)
    return emit(result)


def _grant_session(operation: Operation, args: argparse.Namespace, request: dict[str, Any] | None) -> int:
    session = sessions.grant_session(request or {})
    return emit({"sessionId": session["sessionId"], "permissions": session["permissions"], "expiry": session["expiry"]})


def _revoke_session(operation: Operation, args: argparse.Namespace, request: dict[str, Any] | None) -> int:
    sessions.revoke_session((request or {})["sessionId"])
    return emit({"revoked": True})


def _get_session(operation: Operation, args: argparse.Namespace, request: dict[str, Any] | None) -> int:
    return emit(sessions.load_session((request or {})["sessionId"]))


OperationHandler = Callable[[Operation, argparse.Namespace, "dict[str, Any] | None"], int]

OPERATION_HANDLERS: dict[Operation, OperationHandler] = {
    Operation.INFO: _provider_operation,
    Operation.ACCOUNTS: _provider_operation,
    Operation.SIGN_MESSAGE: _provider_operation,
    Operation.SIGN_TYPED_DATA: _provider_operation,
    Operation.SIGN_TRANSACTION: _provider_operation,
    Operation.SEND_TRANSACTION: _provider_operation,
    Operation.GRANT_SESSION: _grant_session,
    Operation.REVOKE_SESSION: _revoke_session,
    Operation.GET_SESSION: _get_session,
}

_unhandled = set(Operation) - set(OPERATION_HANDLERS)
if _unhandled:
    raise RuntimeError(f"Operations without a handler: {sorted(op.value for op in _unhandled)}")


def cmd_operation(args: argparse.Namespace) -> int:
    operation = Operation(args.operation)
    try:
        request = validate_request(operation, read_request())
        return OPERATION_HANDLERS[operation](operation, args, request)
    except InvalidInputError as exc:
        return fail("INVALID_INPUT", str(exc))
    except SessionError as exc:
        return fail(exc.code, str(exc), EXIT_SESSION_ERROR)
    except WalletExecError as exc:
        _diag(str(exc))
        return fail(exc.error_code, str(exc), exc.exit_code)


def _configure_logging(verbose: bool) -> None:
    level_name = "DEBUG" if verbose else (os.environ.get("CWP_LOG_LEVEL") or "WARNING").upper()
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level_name, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="wallet", add_help=True)
    p.add_argument("--verbose", action="store_true", help="Log debug diagnostics to stderr")
    sub = p.add_subparsers(dest="top")

    ls = sub.add_parser("list", help="Discover wallet providers on PATH")
    ls.set_defaults(func=cmd_list)

    for operation in Operation:
        op = sub.add_parser(operation.value, help=f"{operation.value} (JSON request on stdin)")
        if operation.is_provider_operation:
            op.add_argument("--wallet", help="Use a specific wallet provider")
        op.set_defaults(func=cmd_operation, operation=operation.value, wallet=None)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    if not hasattr(args, "func"):
        parser.print_help(sys.stderr)
        return EXIT_GENERAL_ERROR
    try:
        return int(args.func(args))
    except ConfigError as exc:
        return fail("INTERNAL_ERROR", str(exc))
    except Exception as exc:
        logger.debug("unhandled error", exc_info=True)
        return fail("INTERNAL_ERROR", str(exc) or exc.__class__.__name__)


if __name__ == "__main__":
    raise SystemExit(main())
