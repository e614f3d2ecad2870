import unittest

import pandas as pd

import reports
import repo
from errors import NotFoundError
from support import DBTestCase


class StatementByCategoryTests(DBTestCase):
    def setUp(self):
        super().setUp()
        self.card = self.make_card()
        mercado = repo.ensure_category("Mercado", "despesa", user_id=self.uid)
        lazer = repo.ensure_category("Lazer", "despesa", user_id=self.uid)
        self.add_tx(60, "2025-02-10", card_id=self.card["id"], categoria_id=mercado)
        self.add_tx(40, "2025-02-25", card_id=self.card["id"], categoria_id=mercado)
        self.add_tx(50, "2025-03-01", card_id=self.card["id"], categoria_id=lazer)
        self.add_tx(50, "2025-03-02", card_id=self.card["id"])
        self.add_tx(999, "2025-03-05", card_id=self.card["id"], categoria_id=lazer)

    def test_groups_period_transactions(self):
        rows = reports.statement_by_category(self.card["id"], 3, 2025, user_id=self.uid)
        self.assertEqual([r["categoria"] for r in rows], ["Mercado", "Lazer", "Sem categoria"])
        self.assertEqual(rows[0]["total"], 100.0)
        self.assertEqual(rows[0]["quantidade"], 2)
        self.assertEqual(rows[0]["percentual"], 50.0)
        self.assertEqual(sum(r["total"] for r in rows), 200.0)

    def test_empty_period(self):
        self.assertEqual(reports.statement_by_category(self.card["id"], 8, 2025, user_id=self.uid), [])

    def test_unknown_card(self):
        with self.assertRaises(NotFoundError):
            reports.statement_by_category(4242, 3, 2025, user_id=self.uid)


class InvoiceHistoryTests(DBTestCase):
    def test_history_orders_by_competence(self):
        card = self.make_card()
        repo.upsert_invoice_totals(card["id"], 1, 2025, "2025-01-05", "2025-01-15", 80.0, user_id=self.uid)
        repo.upsert_invoice_totals(card["id"], 12, 2024, "2024-12-05", "2024-12-15", 120.0, user_id=self.uid)

        df = reports.invoice_history(card["id"], user_id=self.uid)
        self.assertIsInstance(df, pd.DataFrame)
        self.assertEqual(list(df["competencia"]), ["2024-12", "2025-01"])
        self.assertEqual(list(df["em_aberto"]), [120.0, 80.0])

        records = reports.invoice_history_records(card["id"], user_id=self.uid)
        self.assertIsNone(records[0]["transacao_pagamento_id"])

    def test_no_invoices(self):
        card = self.make_card()
        self.assertTrue(reports.invoice_history(card["id"], user_id=self.uid).empty)
        self.assertEqual(reports.invoice_history_records(card["id"], user_id=self.uid), [])


if __name__ == "__main__":
    unittest.main()
