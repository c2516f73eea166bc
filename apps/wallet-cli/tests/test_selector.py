import io
import os
import pathlib
import sys
import tempfile
import unittest
from unittest import mock

RUNTIME_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(RUNTIME_ROOT) not in sys.path:
    sys.path.insert(0, str(RUNTIME_ROOT))

from cwp_wallet import selector  # noqa: E402
from provider_fixtures import provider_script, write_provider  # noqa: E402

EMPTY_CONFIG = {"default": None, "disabled": [], "priority": []}


@unittest.skipIf(os.name == "nt", "Fake providers are POSIX shell scripts")
class SelectProviderTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.bin_dir = self._tmp.name
        self.out = io.StringIO()

    def _add(self, short_name: str, capabilities: list[str], chains: list[str]) -> None:
        write_provider(self.bin_dir, f"wallet-{short_name}", provider_script(short_name, capabilities, chains))

    def _select(self, prompt_input=None, **options):
        return selector.select_provider(
            wallet_config=EMPTY_CONFIG,
            search_path=self.bin_dir,
            prompt_input=prompt_input,
            out=self.out,
            **options,
        )

    def _no_prompt(self) -> mock.Mock:
        stream = mock.Mock()
        stream.readline.side_effect = AssertionError("prompt should not be shown")
        return stream

    def test_single_capability_match_is_auto_selected(self) -> None:
        self._add("alpha", ["accounts", "send-transaction"], ["eip155"])
        self._add("bravo", ["accounts"], ["eip155"])
        stream = self._no_prompt()

        provider = self._select(stream, capability="send-transaction")

        self.assertEqual(provider.short_name, "alpha")
        stream.readline.assert_not_called()
        self.assertIn("alpha", self.out.getvalue())

    def test_chain_namespace_matches_full_chain_id(self) -> None:
        self._add("evm", ["accounts"], ["eip155"])
        self._add("sol", ["accounts"], ["solana:5eykt4UsFv8P8NJdTREpY1vzqKqZKvdp"])

        provider = self._select(self._no_prompt(), chain="eip155:10")

        self.assertEqual(provider.short_name, "evm")

    def test_chain_exact_match(self) -> None:
        self._add("mainnet", ["accounts"], ["eip155:1"])
        self._add("optimism", ["accounts"], ["eip155:10"])

        provider = self._select(self._no_prompt(), chain="eip155:10")

        self.assertEqual(provider.short_name, "optimism")

    def test_failed_probes_are_excluded(self) -> None:
        self._add("good", ["sign-message"], ["eip155"])
        write_provider(self.bin_dir, "wallet-bad", "exit 5\n")

        provider = self._select(self._no_prompt(), capability="sign-message")

        self.assertEqual(provider.short_name, "good")

    def test_no_match_returns_none_with_diagnostic(self) -> None:
        self._add("alpha", ["accounts"], ["eip155"])

        self.assertIsNone(self._select(self._no_prompt(), capability="sign-typed-data"))
        self.assertIn("No wallet providers found", self.out.getvalue())

    def test_multiple_matches_prompt_for_index(self) -> None:
        self._add("alpha", ["accounts"], ["eip155"])
        self._add("bravo", ["accounts"], ["eip155"])

        provider = self._select(io.StringIO("2\n"), capability="accounts")

        self.assertEqual(provider.short_name, "bravo")
        listing = self.out.getvalue()
        self.assertIn("1) alpha", listing)
        self.assertIn("2) bravo", listing)

    def test_invalid_selection_is_cancellation(self) -> None:
        self._add("alpha", ["accounts"], ["eip155"])
        self._add("bravo", ["accounts"], ["eip155"])

        for answer in ("3\n", "0\n", "abc\n", ""):
            with self.subTest(answer=answer):
                self.assertIsNone(self._select(io.StringIO(answer), capability="accounts"))

    def test_explicit_wallet_bypasses_filters(self) -> None:
        self._add("alpha", ["accounts"], ["eip155"])
        self._add("bravo", ["accounts"], ["eip155"])

        provider = self._select(self._no_prompt(), wallet="bravo", capability="sign-message")

        self.assertEqual(provider.short_name, "bravo")

    def test_explicit_wallet_missing(self) -> None:
        self._add("alpha", ["accounts"], ["eip155"])

        self.assertIsNone(self._select(self._no_prompt(), wallet="zulu"))
        self.assertIn('Wallet provider "zulu" not found on PATH', self.out.getvalue())

    def test_explicit_wallet_not_responding(self) -> None:
        write_provider(self.bin_dir, "wallet-broken", "exit 1\n")

        self.assertIsNone(self._select(self._no_prompt(), wallet="broken"))
        self.assertIn("failed to respond", self.out.getvalue())


if __name__ == "__main__":
    unittest.main(verbosity=2)
