import asyncio
import random
import unittest
from decimal import Decimal

from luckyhaus.services.draws import DrawService
from luckyhaus.services.ledger import ReplicatedLedger
from luckyhaus.services.operations import LedgerOperations
from luckyhaus.services.payouts import PayoutReconciler, PayoutResult
from luckyhaus.services.rounds import daily_round
from luckyhaus.types import RoundStatus

from .fakes import FakePayoutService, RecordingStore, make_document, make_ticket


class DrawServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.primary = RecordingStore("primary")
        self.ledger = ReplicatedLedger(self.primary, RecordingStore("backup"))
        self.operations = LedgerOperations(self.ledger)

    def _service(self, payouts: FakePayoutService) -> DrawService:
        return DrawService(self.operations, payouts, rng=random.Random(7))

    def test_paid_winner_is_recorded_with_next_round(self) -> None:
        self.primary.seed(make_document([make_ticket("t1")], pot="1.5", version=1))
        payouts = FakePayoutService()

        outcome = asyncio.run(self._service(payouts).end_round("round-1"))

        self.assertTrue(outcome.persisted)
        self.assertEqual(outcome.ticket_id, "t1")
        self.assertEqual(payouts.calls, [("wallet-a", Decimal("1.5"))])

        document = self.primary.document
        self.assertEqual(len(document.winners), 1)
        winner = document.winners[0]
        self.assertEqual(winner.round_id, "round-1")
        self.assertEqual(winner.payout_signature, "sig-1")
        self.assertTrue(winner.settled)
        self.assertEqual(document.current_round.id, outcome.new_round.id)
        self.assertEqual(document.current_round.pot_size, Decimal("0"))
        self.assertEqual(document.current_round.total_tickets, 0)
        self.assertEqual(len(document.tickets), 1)

        payload = outcome.to_payload()
        self.assertTrue(payload["success"])
        self.assertEqual(payload["winner"]["ticketId"], "t1")
        self.assertEqual(payload["winner"]["payoutSignature"], "sig-1")

    def test_round_ends_only_once(self) -> None:
        self.primary.seed(make_document([make_ticket("t1")], version=1))
        payouts = FakePayoutService()
        service = self._service(payouts)

        asyncio.run(service.end_round("round-1"))
        again = asyncio.run(service.end_round("round-1"))

        self.assertTrue(again.already_ended)
        self.assertEqual(again.winner.wallet_address, "wallet-a")
        self.assertEqual(len(payouts.calls), 1)
        self.assertEqual(len(self.primary.document.winners), 1)
        self.assertTrue(again.to_payload()["alreadyEnded"])

    def test_failed_payout_leaves_a_pending_winner(self) -> None:
        self.primary.seed(make_document([make_ticket("t1")], version=1))
        payouts = FakePayoutService([PayoutResult(False, error="insufficient funds")])

        outcome = asyncio.run(self._service(payouts).end_round("round-1"))

        self.assertTrue(outcome.persisted)
        self.assertEqual(outcome.winner.payout_error, "insufficient funds")
        reconciler = PayoutReconciler(self.ledger, payouts)
        pending = asyncio.run(reconciler.list_pending())
        self.assertEqual([w.round_id for w in pending], ["round-1"])

        result = asyncio.run(reconciler.retry("round-1", "wallet-a"))
        self.assertTrue(result.success)
        self.assertEqual(result.signature, "sig-2")
        self.assertEqual(asyncio.run(reconciler.list_pending()), [])

    def test_draw_picks_a_ticket_of_the_round(self) -> None:
        tickets = [
            make_ticket("t1", wallet="wallet-a"),
            make_ticket("t2", wallet="wallet-b"),
            make_ticket("t3", wallet="wallet-c", round_id="round-0"),
        ]
        self.primary.seed(make_document(tickets, version=1))

        outcome = asyncio.run(self._service(FakePayoutService()).end_round("round-1"))

        self.assertIn(outcome.ticket_id, ("t1", "t2"))
        self.assertIn(outcome.winner.wallet_address, ("wallet-a", "wallet-b"))

    def test_round_without_tickets_has_no_winner(self) -> None:
        self.primary.seed(make_document(version=1))
        payouts = FakePayoutService()

        outcome = asyncio.run(self._service(payouts).end_round("round-1"))

        self.assertIsNone(outcome.winner)
        self.assertEqual(payouts.calls, [])
        self.assertEqual(self.primary.document.winners, [])
        self.assertNotEqual(self.primary.document.current_round.id, "round-1")

    def test_empty_pot_is_not_paid(self) -> None:
        self.primary.seed(make_document([make_ticket("t1")], pot="0", version=1))
        payouts = FakePayoutService()

        outcome = asyncio.run(self._service(payouts).end_round("round-1"))

        self.assertIsNone(outcome.winner)
        self.assertEqual(outcome.ticket_id, "t1")
        self.assertEqual(payouts.calls, [])

    def test_next_round_never_reuses_the_ended_id(self) -> None:
        today = daily_round("Europe/Amsterdam")
        self.primary.seed(make_document([make_ticket("t1", round_id=today.id)], version=1))

        outcome = asyncio.run(self._service(FakePayoutService()).end_round(today.id))

        self.assertNotEqual(outcome.new_round.id, today.id)
        self.assertGreater(outcome.new_round.round_number, today.round_number)

    def test_concurrent_ends_pay_once(self) -> None:
        primary = RecordingStore("primary", delay_reads=True)
        primary.seed(make_document([make_ticket("t1")], pot="5", version=1))
        payouts = FakePayoutService()
        service = DrawService(LedgerOperations(ReplicatedLedger(primary)), payouts, rng=random.Random(7))

        async def end_twice():
            return await asyncio.gather(service.end_round("round-1"), service.end_round("round-1"))

        outcomes = asyncio.run(end_twice())

        self.assertEqual(payouts.calls, [("wallet-a", Decimal("5"))])
        self.assertEqual(len(primary.document.winners), 1)
        self.assertEqual(sorted(o.already_ended for o in outcomes), [False, True])
        self.assertEqual(primary.document.current_round.status, RoundStatus.ACTIVE)

    def test_round_being_drawn_is_not_drawn_again(self) -> None:
        document = make_document([make_ticket("t1")], version=1)
        document.current_round.status = RoundStatus.DRAWING
        self.primary.seed(document)
        payouts = FakePayoutService()

        outcome = asyncio.run(self._service(payouts).end_round("round-1"))

        self.assertTrue(outcome.already_ended)
        self.assertIsNone(outcome.winner)
        self.assertEqual(payouts.calls, [])
        self.assertEqual(self.primary.puts, [])

    def test_missing_ledger_raises(self) -> None:
        with self.assertRaises(LookupError):
            asyncio.run(self._service(FakePayoutService()).end_round("round-1"))

    def test_unclaimable_round_is_not_paid(self) -> None:
        self.primary.seed(make_document([make_ticket("t1")], version=1))
        self.primary.fail_puts = True
        operations = LedgerOperations(ReplicatedLedger(self.primary))
        payouts = FakePayoutService()

        outcome = asyncio.run(DrawService(operations, payouts).end_round("round-1"))

        self.assertEqual(payouts.calls, [])
        self.assertFalse(outcome.persisted)
        self.assertFalse(outcome.to_payload()["success"])
        self.assertIn("error", outcome.to_payload())


if __name__ == "__main__":
    unittest.main()
