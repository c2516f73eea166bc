"""Run one operation against a wallet provider executable.

A provider is invoked as ``<path> <operation>``. The request (if any) is
written to stdin as JSON and stdin is closed; the provider answers with one
JSON document on stdout and signals the outcome through its exit code.
"""

from __future__ import annotations

import json
import logging
import subprocess
from typing import Any

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_GENERAL_ERROR = 1
EXIT_UNSUPPORTED = 2
EXIT_REJECTED = 3
EXIT_TIMEOUT = 4
EXIT_NOT_CONNECTED = 5
EXIT_SESSION_ERROR = 6

EXIT_CODE_MESSAGES = {
    EXIT_UNSUPPORTED: "Operation not supported",
    EXIT_REJECTED: "User rejected the request",
    EXIT_TIMEOUT: "Operation timed out",
    EXIT_NOT_CONNECTED: "No wallet connection active",
}

EXIT_CODE_ERROR_CODES = {
    EXIT_UNSUPPORTED: "UNSUPPORTED_OPERATION",
    EXIT_REJECTED: "USER_REJECTED",
    EXIT_TIMEOUT: "TIMEOUT",
    EXIT_NOT_CONNECTED: "NOT_CONNECTED",
}

RAW_OUTPUT_PREVIEW = 200


class WalletExecError(Exception):
    """A provider call failed; carries the CWP exit code and error code."""

    def __init__(self, message: str, exit_code: int, error_code: str = "INTERNAL_ERROR"):
        super().__init__(message)
        self.exit_code = exit_code
        self.error_code = error_code


def _parse_error_body(stdout: str) -> tuple[str | None, str | None]:
    try:
        parsed = json.loads(stdout.strip())
    except ValueError:
        return None, None
    if not isinstance(parsed, dict):
        return None, None
    message = parsed.get("error")
    code = parsed.get("code")
    return (
        message if isinstance(message, str) and message else None,
        code if isinstance(code, str) and code else None,
    )


def wallet_exec(binary: str, operation: str, payload: Any = None, timeout_ms: int = 10000) -> Any:
    """Invoke ``binary operation`` and return the parsed JSON result.

    Raises WalletExecError on launch failure, timeout, nonzero exit or a
    success exit whose stdout is not JSON. No retries are attempted.
    """
    cmd = [binary, operation]
    kwargs: dict[str, Any] = {}
    if payload is not None:
        kwargs["input"] = json.dumps(payload, separators=(",", ":"))
    else:
        kwargs["stdin"] = subprocess.DEVNULL

    logger.debug("exec %s (timeout %sms)", cmd, timeout_ms)
    try:
        proc = subprocess.run(
            cmd,
            text=True,
            encoding="utf-8",
            errors="replace",
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            timeout=timeout_ms / 1000,
            **kwargs,
        )
    except subprocess.TimeoutExpired as exc:
        raise WalletExecError(
            f"{binary} timed out after {timeout_ms}ms", EXIT_TIMEOUT, "TIMEOUT"
        ) from exc
    except FileNotFoundError as exc:
        raise WalletExecError(f"Wallet provider not found: {binary}", EXIT_GENERAL_ERROR) from exc
    except OSError as exc:
        raise WalletExecError(str(exc), EXIT_GENERAL_ERROR) from exc

    stdout = proc.stdout or ""
    if proc.returncode == EXIT_SUCCESS:
        try:
            return json.loads(stdout.strip())
        except ValueError as exc:
            raise WalletExecError(
                f"Invalid JSON from {binary}: {stdout[:RAW_OUTPUT_PREVIEW]}", EXIT_GENERAL_ERROR
            ) from exc

    # A negative return code means the provider was killed by a signal.
    exit_code = proc.returncode if proc.returncode > 0 else EXIT_GENERAL_ERROR
    logger.debug("%s %s exited with %s", binary, operation, proc.returncode)
    message, code = _parse_error_body(stdout)
    raise WalletExecError(
        message or EXIT_CODE_MESSAGES.get(exit_code) or f"{binary} exited with code {exit_code}",
        exit_code,
        code or EXIT_CODE_ERROR_CODES.get(exit_code, "INTERNAL_ERROR"),
    )
