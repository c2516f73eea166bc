"""Find wallet providers on PATH and probe them for capabilities."""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from cwp_wallet import config
from cwp_wallet.executor import WalletExecError, wallet_exec
from cwp_wallet.operations import InvalidInputError, validate_info_response

logger = logging.getLogger(__name__)


@dataclass
class ProviderCandidate:
    """An executable on PATH whose name carries the provider prefix."""

    binary_name: str
    short_name: str
    path: str


@dataclass
class ProviderInfo:
    """A probed provider. Exactly one of ``info`` / ``error`` is set."""

    binary: str
    short_name: str
    path: str
    capabilities: tuple[str, ...] = ()
    chains: tuple[str, ...] = ()
    info: dict[str, Any] | None = None
    error: str | None = None

    @property
    def available(self) -> bool:
        return self.info is not None

    def supports_chain(self, chain: str) -> bool:
        namespace = chain.split(":", 1)[0]
        return chain in self.chains or namespace in self.chains

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": self.short_name, "binary": self.binary, "path": self.path}
        payload.update(self.info or {})
        if self.error:
            payload["error"] = self.error
        return payload


def find_candidates(search_path: str | None = None) -> list[ProviderCandidate]:
    """List provider executables, first match on PATH wins."""
    if search_path is None:
        search_path = os.environ.get("PATH", "")
    seen: set[str] = set()
    candidates: list[ProviderCandidate] = []
    for directory in search_path.split(os.pathsep):
        if not directory:
            continue
        try:
            entries = sorted(os.listdir(directory))
        except OSError:
            continue
        for entry in entries:
            if not entry.startswith(config.PROVIDER_PREFIX) or entry in seen:
                continue
            short_name = entry[len(config.PROVIDER_PREFIX):]
            if not short_name:
                continue
            path = os.path.join(directory, entry)
            if not os.path.isfile(path) or not os.access(path, os.R_OK | os.X_OK):
                continue
            seen.add(entry)
            candidates.append(ProviderCandidate(binary_name=entry, short_name=short_name, path=path))
    return candidates


def probe_provider(candidate: ProviderCandidate, timeout_ms: int) -> ProviderInfo:
    provider = ProviderInfo(binary=candidate.binary_name, short_name=candidate.short_name, path=candidate.path)
    try:
        raw = wallet_exec(candidate.path, "info", None, timeout_ms)
        info = validate_info_response(raw)
    except WalletExecError as exc:
        provider.error = str(exc)
    except InvalidInputError as exc:
        provider.error = f"Invalid info response: {exc}"
    else:
        provider.info = info
        provider.capabilities = tuple(info["capabilities"])
        provider.chains = tuple(info["chains"])
    if provider.error:
        logger.debug("probe of %s failed: %s", candidate.path, provider.error)
    return provider


def _sort_key(provider: ProviderInfo, priority: list[str]) -> tuple[int, int, str]:
    if provider.short_name in priority:
        return (0, priority.index(provider.short_name), "")
    return (1, 0, provider.short_name)


def discover_providers(
    wallet_config: dict[str, Any] | None = None,
    search_path: str | None = None,
    timeout_ms: int | None = None,
) -> list[ProviderInfo]:
    """Probe every enabled candidate concurrently and rank the results.

    Probe failures are recorded on the provider, never raised.
    """
    if wallet_config is None:
        wallet_config = config.load_wallet_config()
    if timeout_ms is None:
        timeout_ms = config.probe_timeout_ms()
    disabled = set(wallet_config.get("disabled") or [])
    candidates = [c for c in find_candidates(search_path) if c.short_name not in disabled]
    if not candidates:
        return []

    with ThreadPoolExecutor(max_workers=len(candidates)) as pool:
        futures = [pool.submit(probe_provider, candidate, timeout_ms) for candidate in candidates]
        providers = [future.result() for future in futures]

    priority = list(wallet_config.get("priority") or [])
    return sorted(providers, key=lambda p: _sort_key(p, priority))


def get_default_provider(
    wallet_config: dict[str, Any] | None = None,
    search_path: str | None = None,
) -> ProviderInfo | None:
    if wallet_config is None:
        wallet_config = config.load_wallet_config()
    providers = discover_providers(wallet_config, search_path)
    default_name = wallet_config.get("default")
    if default_name:
        for provider in providers:
            if provider.short_name == default_name and provider.available:
                return provider
    for provider in providers:
        if provider.available:
            return provider
    return None


def get_provider(
    name: str,
    wallet_config: dict[str, Any] | None = None,
    search_path: str | None = None,
) -> ProviderInfo | None:
    for provider in discover_providers(wallet_config, search_path):
        if name in (provider.short_name, provider.binary):
            return provider
    return None
