"""Pick one provider for an operation, prompting only when it is ambiguous."""

from __future__ import annotations

import sys
from typing import Any, TextIO

from cwp_wallet import discovery
from cwp_wallet.discovery import ProviderInfo


def _diag(message: str, out: TextIO | None = None) -> None:
    print(message, file=out or sys.stderr)


def _open_terminal() -> TextIO | None:
    if sys.stdin is not None and sys.stdin.isatty():
        return sys.stdin
    try:
        return open("/dev/tty", encoding="utf-8")
    except OSError:
        return None


def _prompt_choice(providers: list[ProviderInfo], prompt_input: TextIO | None, out: TextIO | None) -> ProviderInfo | None:
    _diag("Multiple wallet providers available:", out)
    for index, provider in enumerate(providers, start=1):
        info = provider.info or {}
        _diag(f"  {index}) {provider.short_name} ({info.get('name', '?')} {info.get('version', '?')})", out)

    owned = prompt_input is None
    stream = _open_terminal() if owned else prompt_input
    if stream is None:
        _diag("No terminal available for selection; pass --wallet <name>.", out)
        return None
    try:
        target = out or sys.stderr
        target.write(f"Select a wallet provider [1-{len(providers)}]: ")
        target.flush()
        line = stream.readline()
    finally:
        if owned and stream is not sys.stdin:
            stream.close()

    raw = line.strip()
    if not raw.isdigit() or not 1 <= int(raw) <= len(providers):
        _diag("Invalid selection.", out)
        return None
    return providers[int(raw) - 1]


def select_provider(
    capability: str | None = None,
    chain: str | None = None,
    wallet: str | None = None,
    *,
    wallet_config: dict[str, Any] | None = None,
    search_path: str | None = None,
    prompt_input: TextIO | None = None,
    out: TextIO | None = None,
) -> ProviderInfo | None:
    """Resolve the provider to use, or None (with a diagnostic) if there is none.

    An explicit ``wallet`` name bypasses filtering. Otherwise providers that
    answered their probe are filtered by capability and chain; a single match
    is used directly and several matches are offered as a numbered list.
    """
    if wallet:
        provider = discovery.get_provider(wallet, wallet_config, search_path)
        if provider is None:
            _diag(f'Wallet provider "{wallet}" not found on PATH', out)
            return None
        if not provider.available:
            _diag(f'Wallet provider "{provider.short_name}" failed to respond: {provider.error}', out)
            return None
        return provider

    matches = [p for p in discovery.discover_providers(wallet_config, search_path) if p.available]
    if capability:
        matches = [p for p in matches if capability in p.capabilities]
    if chain:
        matches = [p for p in matches if p.supports_chain(chain)]

    if not matches:
        wanted = " ".join(part for part in (capability, chain) if part)
        _diag(f"No wallet providers found{' for ' + wanted if wanted else ''}", out)
        return None
    if len(matches) == 1:
        _diag(f"Using wallet provider: {matches[0].short_name}", out)
        return matches[0]
    return _prompt_choice(matches, prompt_input, out)
