"""CLI Wallet Protocol runtime: provider discovery, invocation and sessions."""

__version__ = "0.1.0"
