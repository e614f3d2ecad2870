import unittest
from decimal import Decimal
from unittest.mock import patch

import limits
import repo
from errors import NotFoundError, StoreError
from support import DBTestCase
from utils import to_money


class UsedLimitTests(unittest.TestCase):
    def test_sums_only_open_expenses(self):
        txs = [
            {"tipo": "despesa", "status": "pendente", "valor": 100.10},
            {"tipo": "despesa", "status": "atrasado", "valor": 20},
            {"tipo": "despesa", "status": "pago", "valor": 999},
            {"tipo": "despesa", "status": "cancelado", "valor": 999},
            {"tipo": "receita", "status": "pendente", "valor": 999},
        ]
        self.assertEqual(limits.used_limit(txs), Decimal("120.10"))

    def test_empty_set(self):
        self.assertEqual(limits.used_limit([]), Decimal("0.00"))


class ReconcileCardLimitTests(DBTestCase):
    def setUp(self):
        super().setUp()
        self.card = self.make_card()
        self.card_id = int(self.card["id"])
        other = self.make_card(name="Outro")
        self.add_tx(100, "2025-02-20", card_id=self.card_id)
        self.add_tx(25.5, "2025-04-20", card_id=self.card_id, status="atrasado")
        self.add_tx(70, "2025-02-21", card_id=self.card_id, status="pago")
        self.add_tx(300, "2025-02-20", card_id=other["id"])
        self.add_tx(10, "2025-02-20")

    def test_reconcile_persists_derived_value(self):
        value = limits.reconcile_card_limit(self.card_id, user_id=self.uid)
        self.assertEqual(value, Decimal("125.50"))
        stored = repo.get_credit_card(self.card_id, user_id=self.uid)["limit_used"]
        self.assertEqual(to_money(stored), Decimal("125.50"))

    def test_reconcile_without_persist(self):
        value = limits.reconcile_card_limit(self.card_id, user_id=self.uid, persist=False)
        self.assertEqual(value, Decimal("125.50"))
        self.assertEqual(repo.get_credit_card(self.card_id, user_id=self.uid)["limit_used"], 0)

    def test_reconcile_unknown_card(self):
        with self.assertRaises(NotFoundError):
            limits.reconcile_card_limit(4242, user_id=self.uid)

    def test_refresh_rewrites_stale_cache(self):
        repo.set_card_limit_used(self.card_id, 999, user_id=self.uid)
        cards = limits.refresh_card_limits(repo.list_credit_cards(user_id=self.uid), user_id=self.uid)
        by_id = {c["id"]: c for c in cards}
        self.assertEqual(by_id[self.card_id]["limit_used"], 125.5)
        self.assertEqual(to_money(repo.get_credit_card(self.card_id, user_id=self.uid)["limit_used"]), Decimal("125.50"))

    def test_refresh_skips_write_within_epsilon(self):
        repo.set_card_limit_used(self.card_id, 125.51, user_id=self.uid)
        with patch("repo.set_card_limit_used") as write:
            cards = limits.refresh_card_limits(
                [repo.get_credit_card(self.card_id, user_id=self.uid)], user_id=self.uid
            )
        write.assert_not_called()
        self.assertEqual(cards[0]["limit_used"], 125.5)

    def test_refresh_is_best_effort(self):
        repo.set_card_limit_used(self.card_id, 999, user_id=self.uid)
        with patch("repo.fetch_card_open_expenses", side_effect=StoreError("offline")):
            with self.assertLogs("limits", level="WARNING"):
                cards = limits.refresh_card_limits(repo.list_credit_cards(user_id=self.uid), user_id=self.uid)
        self.assertEqual(len(cards), 2)
        self.assertEqual({c["limit_used"] for c in cards if c["id"] == self.card_id}, {999})


if __name__ == "__main__":
    unittest.main()
