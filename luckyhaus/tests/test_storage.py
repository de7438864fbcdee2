import asyncio
import json
import tempfile
import unittest
from decimal import Decimal
from pathlib import Path
from unittest import mock

import requests

from luckyhaus.config import BackupStoreSettings
from luckyhaus.db import build_engine
from luckyhaus.schemas import LedgerDocument
from luckyhaus.storage import GistLedgerStore, SqlLedgerStore
from luckyhaus.types import Found, NotFound, Unavailable, WriteStatus

from .fakes import make_document, make_ticket, make_winner


class SqlLedgerStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = SqlLedgerStore(build_engine("sqlite://"), "test-ledger")

    def tearDown(self) -> None:
        self.store.engine.dispose()

    def test_missing_row_is_not_found(self) -> None:
        self.assertIsInstance(asyncio.run(self.store.get()), NotFound)

    def test_round_trip_keeps_version(self) -> None:
        document = make_document([make_ticket("t1")], [make_winner(signature="sig")], pot="0.51", version=1)

        self.assertTrue(asyncio.run(self.store.put(document)).ok)
        result = asyncio.run(self.store.get())

        self.assertIsInstance(result, Found)
        self.assertEqual(result.document.version, 1)
        self.assertEqual(result.document.current_round.pot_size, Decimal("0.51"))
        self.assertEqual(result.document.to_payload(), document.to_payload())

    def test_conditional_create(self) -> None:
        first = asyncio.run(self.store.put(make_document(version=1), expected_version=0))
        second = asyncio.run(self.store.put(make_document(version=1), expected_version=0))

        self.assertTrue(first.ok)
        self.assertIs(second.status, WriteStatus.CONFLICT)

    def test_conditional_update(self) -> None:
        asyncio.run(self.store.put(make_document(version=1), expected_version=0))

        stale = asyncio.run(self.store.put(make_document(version=3), expected_version=2))
        fresh = asyncio.run(self.store.put(make_document([make_ticket("t1")], version=2), expected_version=1))

        self.assertIs(stale.status, WriteStatus.CONFLICT)
        self.assertTrue(fresh.ok)
        result = asyncio.run(self.store.get())
        self.assertEqual(result.document.version, 2)
        self.assertEqual(len(result.document.tickets), 1)

    def test_unconditional_put_overwrites(self) -> None:
        asyncio.run(self.store.put(make_document(version=4)))
        self.assertTrue(asyncio.run(self.store.put(make_document(version=1))).ok)
        self.assertEqual(asyncio.run(self.store.get()).document.version, 1)

    def test_unreachable_database(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            missing = Path(tmpdir) / "missing" / "ledger.db"
            store = SqlLedgerStore.from_url(f"sqlite:///{missing}", "test-ledger")

            read = asyncio.run(store.get())
            write = asyncio.run(store.put(make_document()))
            ping = asyncio.run(store.ping())
            store.engine.dispose()

        self.assertIsInstance(read, Unavailable)
        self.assertIs(write.status, WriteStatus.FAILED)
        self.assertFalse(ping)


class GistLedgerStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = mock.Mock()
        self.settings = BackupStoreSettings(
            github_token="ghp_test", gist_id="abc123", api_url="https://api.github.test"
        )
        self.store = GistLedgerStore(self.settings, session=self.session)

    def _response(self, status_code=200, payload=None, text=""):
        response = mock.Mock()
        response.status_code = status_code
        response.json.return_value = payload
        response.text = text
        if status_code >= 400:
            response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
        return response

    def _gist(self, content):
        return {"id": "abc123", "files": {"lottery-data.json": {"content": content}}}

    def test_without_gist_id_nothing_is_requested(self) -> None:
        store = GistLedgerStore(BackupStoreSettings(github_token="ghp_test"), session=self.session)
        self.assertIsInstance(asyncio.run(store.get()), NotFound)
        self.assertIsNone(store.gist_url)
        self.session.get.assert_not_called()

    def test_missing_gist_is_not_found(self) -> None:
        self.session.get.return_value = self._response(404)
        self.assertIsInstance(asyncio.run(self.store.get()), NotFound)

    def test_missing_file_is_not_found(self) -> None:
        self.session.get.return_value = self._response(payload={"id": "abc123", "files": {}})
        self.assertIsInstance(asyncio.run(self.store.get()), NotFound)

    def test_reads_document(self) -> None:
        document = make_document([make_ticket("t1")], version=7)
        self.session.get.return_value = self._response(payload=self._gist(document.to_json()))

        result = asyncio.run(self.store.get())

        self.assertIsInstance(result, Found)
        self.assertEqual(result.document.to_payload(), document.to_payload())
        args, kwargs = self.session.get.call_args
        self.assertEqual(args[0], "https://api.github.test/gists/abc123")
        self.assertEqual(kwargs["headers"]["Authorization"], "token ghp_test")
        self.assertEqual(kwargs["headers"]["User-Agent"], "LuckyHaus-Lottery")

    def test_truncated_file_is_fetched_raw(self) -> None:
        document = make_document(version=2)
        gist = {
            "files": {
                "lottery-data.json": {
                    "content": document.to_json()[:10],
                    "truncated": True,
                    "raw_url": "https://gist.githubusercontent.test/raw/lottery-data.json",
                }
            }
        }
        self.session.get.side_effect = [
            self._response(payload=gist),
            self._response(text=document.to_json()),
        ]

        result = asyncio.run(self.store.get())

        self.assertIsInstance(result, Found)
        self.assertEqual(result.document.version, 2)
        self.assertEqual(
            self.session.get.call_args_list[1][0][0],
            "https://gist.githubusercontent.test/raw/lottery-data.json",
        )

    def test_server_error_is_unavailable(self) -> None:
        self.session.get.return_value = self._response(502)
        self.assertIsInstance(asyncio.run(self.store.get()), Unavailable)

    def test_corrupt_content_is_unavailable(self) -> None:
        self.session.get.return_value = self._response(payload=self._gist("{not json"))
        result = asyncio.run(self.store.get())
        self.assertIsInstance(result, Unavailable)
        self.assertIn("corrupt", result.cause)

    def test_put_updates_existing_gist(self) -> None:
        self.session.patch.return_value = self._response(payload=self._gist("{}"))
        document = make_document([make_ticket("t1")], version=3)

        result = asyncio.run(self.store.put(document, expected_version=2))

        self.assertTrue(result.ok)
        args, kwargs = self.session.patch.call_args
        self.assertEqual(args[0], "https://api.github.test/gists/abc123")
        stored = json.loads(kwargs["json"]["files"]["lottery-data.json"]["content"])
        self.assertEqual(LedgerDocument.from_payload(stored).to_payload(), document.to_payload())

    def test_first_write_creates_secret_gist(self) -> None:
        store = GistLedgerStore(
            BackupStoreSettings(github_token="ghp_test", api_url="https://api.github.test"),
            session=self.session,
        )
        self.session.post.return_value = self._response(201, payload={"id": "new-gist"})

        result = asyncio.run(store.put(make_document()))

        self.assertTrue(result.ok)
        self.assertEqual(store.gist_id, "new-gist")
        self.assertEqual(store.gist_url, "https://gist.github.com/new-gist")
        args, kwargs = self.session.post.call_args
        self.assertEqual(args[0], "https://api.github.test/gists")
        self.assertFalse(kwargs["json"]["public"])
        self.session.patch.assert_not_called()

    def test_put_failure_is_reported(self) -> None:
        self.session.patch.side_effect = requests.ConnectionError("unreachable")

        result = asyncio.run(self.store.put(make_document()))

        self.assertIs(result.status, WriteStatus.FAILED)
        self.assertIn("unreachable", result.detail)


class LedgerDocumentTests(unittest.TestCase):
    def test_legacy_payout_key_is_accepted(self) -> None:
        payload = {
            "currentRound": {
                "id": "round-1",
                "roundNumber": 1,
                "potSize": 0.1,
                "totalTickets": 0,
                "endTime": 1,
            },
            "tickets": [],
            "winners": [
                {
                    "roundId": "round-1",
                    "walletAddress": "wallet-a",
                    "prizeAmount": 0.1,
                    "timestamp": 1,
                    "payoutTransactionSignature": "legacy-sig",
                }
            ],
        }

        document = LedgerDocument.from_payload(payload)

        winner = document.winners[0]
        self.assertEqual(winner.payout_signature, "legacy-sig")
        self.assertTrue(winner.settled)
        self.assertEqual(winner.prize_amount, Decimal("0.1"))
        self.assertEqual(document.version, 0)
        self.assertEqual(document.to_payload()["winners"][0]["payoutSignature"], "legacy-sig")
        self.assertNotIn("payoutError", document.to_payload()["winners"][0])

    def test_clone_is_independent(self) -> None:
        document = make_document([make_ticket("t1")], version=1)
        copy = document.clone(version=2)
        copy.tickets.append(make_ticket("t2"))

        self.assertEqual(document.version, 1)
        self.assertEqual(len(document.tickets), 1)
        self.assertTrue(copy.tickets[0].id == "t1" and copy.version == 2)


if __name__ == "__main__":
    unittest.main()
