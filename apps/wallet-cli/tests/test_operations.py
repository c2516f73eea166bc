import pathlib
import sys
import unittest

RUNTIME_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(RUNTIME_ROOT) not in sys.path:
    sys.path.insert(0, str(RUNTIME_ROOT))

from cwp_wallet import cli  # noqa: E402
from cwp_wallet.operations import (  # noqa: E402
    InvalidInputError,
    Operation,
    to_checksum_address,
    validate_info_response,
    validate_request,
)

CHECKSUMMED = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"


class OperationDispatchTests(unittest.TestCase):
    def test_every_operation_has_a_handler(self) -> None:
        self.assertEqual(set(cli.OPERATION_HANDLERS), set(Operation))

    def test_every_operation_has_a_subcommand(self) -> None:
        parser = cli.build_parser()
        for operation in Operation:
            with self.subTest(operation=operation.value):
                args = parser.parse_args([operation.value])
                self.assertEqual(args.operation, operation.value)
        self.assertEqual(parser.parse_args(["sign-message", "--wallet", "alpha"]).wallet, "alpha")

    def test_session_operations_are_local(self) -> None:
        self.assertFalse(Operation.GRANT_SESSION.is_provider_operation)
        self.assertTrue(Operation.SEND_TRANSACTION.is_provider_operation)


class RequestValidationTests(unittest.TestCase):
    def test_checksum_address(self) -> None:
        self.assertEqual(to_checksum_address(CHECKSUMMED.lower()), CHECKSUMMED)

    def test_bad_checksum_rejected(self) -> None:
        broken = CHECKSUMMED[:3] + CHECKSUMMED[3].upper() + CHECKSUMMED[4:]
        with self.assertRaisesRegex(InvalidInputError, "EIP-55"):
            validate_request(Operation.SIGN_MESSAGE, {"account": broken, "message": "hi"})

    def test_single_case_addresses_skip_checksum(self) -> None:
        for account in (CHECKSUMMED.lower(), "0x" + CHECKSUMMED[2:].upper(), CHECKSUMMED):
            with self.subTest(account=account):
                validate_request(Operation.SIGN_MESSAGE, {"account": account, "message": "hi"})

    def test_missing_fields(self) -> None:
        with self.assertRaisesRegex(InvalidInputError, "Missing account, message"):
            validate_request(Operation.SIGN_MESSAGE, None)
        with self.assertRaisesRegex(InvalidInputError, "Missing chain"):
            validate_request(Operation.SEND_TRANSACTION, {"account": CHECKSUMMED, "transaction": {"to": CHECKSUMMED}})
        with self.assertRaisesRegex(InvalidInputError, "Missing sessionId"):
            validate_request(Operation.GET_SESSION, {})

    def test_request_must_be_object(self) -> None:
        with self.assertRaises(InvalidInputError):
            validate_request(Operation.ACCOUNTS, ["not", "an", "object"])

    def test_accounts_needs_no_request(self) -> None:
        self.assertIsNone(validate_request(Operation.ACCOUNTS, None))

    def test_typed_data_shape(self) -> None:
        with self.assertRaisesRegex(InvalidInputError, "typedData missing"):
            validate_request(Operation.SIGN_TYPED_DATA, {"account": CHECKSUMMED, "typedData": {"domain": {}}})

    def test_transaction_recipient_checksum(self) -> None:
        broken = CHECKSUMMED.replace("a", "A", 1)
        with self.assertRaisesRegex(InvalidInputError, "transaction.to"):
            validate_request(
                Operation.SEND_TRANSACTION,
                {"account": CHECKSUMMED, "chain": "eip155:1", "transaction": {"to": broken, "value": "1"}},
            )

    def test_grant_session_schema(self) -> None:
        base = {"account": CHECKSUMMED, "chain": "eip155:1", "expiry": 1}
        valid = [
            {"operation": "sign-message"},
            {
                "operation": "send-transaction",
                "policies": [
                    {"type": "value-limit", "params": {"maxValue": "1000"}},
                    {"type": "recipient-allowlist", "params": {"addresses": [CHECKSUMMED]}},
                    {"type": "call-limit", "params": {"operation": "send-transaction", "maxCalls": 3}},
                ],
            },
        ]
        validate_request(Operation.GRANT_SESSION, {**base, "permissions": valid})

        invalid = [
            [{"operation": "x", "policies": [{"type": "value-limit", "params": {"maxValue": "-1"}}]}],
            [{"operation": "x", "policies": [{"type": "value-limit", "params": {"maxValue": 1.5}}]}],
            [{"operation": "x", "policies": [{"type": "recipient-allowlist", "params": {"addresses": "0x1"}}]}],
            [{"operation": "x", "policies": [{"type": "call-limit", "params": {"maxCalls": 1}}]}],
            [{"operation": "x", "policies": [{"type": "call-limit", "params": {"operation": "x", "maxCalls": True}}]}],
            [{"operation": "x", "policies": [{"type": "unknown", "params": {}}]}],
            [{"policies": []}],
            "sign-message",
        ]
        for permissions in invalid:
            with self.subTest(permissions=permissions):
                with self.assertRaises(InvalidInputError):
                    validate_request(Operation.GRANT_SESSION, {**base, "permissions": permissions})

        with self.assertRaisesRegex(InvalidInputError, "expiry"):
            validate_request(Operation.GRANT_SESSION, {**base, "expiry": "tomorrow", "permissions": valid})


class InfoResponseTests(unittest.TestCase):
    def test_valid_info(self) -> None:
        info = {"name": "w", "version": "1", "rdns": "com.example.w", "capabilities": ["accounts"], "chains": ["eip155"]}
        self.assertEqual(validate_info_response(info), info)

    def test_invalid_info(self) -> None:
        cases = [
            [],
            {"version": "1", "capabilities": [], "chains": []},
            {"name": "w", "version": "1", "capabilities": "accounts", "chains": []},
            {"name": "w", "version": "1", "capabilities": [], "chains": [1]},
            {"name": "w", "version": "1", "capabilities": [], "chains": [], "protocolVersion": 1},
        ]
        for raw in cases:
            with self.subTest(raw=raw):
                with self.assertRaises(InvalidInputError):
                    validate_info_response(raw)


if __name__ == "__main__":
    unittest.main(verbosity=2)
