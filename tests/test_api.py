import unittest

from fastapi.testclient import TestClient

import repo
from api.main import app
from api.security import create_token
from support import DBTestCase


class ApiTestCase(DBTestCase):
    def setUp(self):
        super().setUp()
        self.client = TestClient(app)
        self.headers = {"Authorization": f"Bearer {create_token(self.uid, self.user['email'])}"}

    def post(self, path, json):
        return self.client.post(path, json=json, headers=self.headers)

    def get(self, path, **params):
        return self.client.get(path, params=params, headers=self.headers)


class AuthEndpointTests(ApiTestCase):
    def test_health_is_public(self):
        self.assertEqual(self.client.get("/health").json(), {"ok": True})

    def test_missing_token(self):
        resp = self.client.get("/cards")
        self.assertEqual(resp.status_code, 401)
        self.assertIn("error", resp.json())

    def test_login_returns_token(self):
        resp = self.client.post("/auth/login", json={"email": "teste@example.com", "password": "segredo123"})
        self.assertEqual(resp.status_code, 200)
        token = resp.json()["token"]
        me = self.client.get("/me", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(me.json()["email"], "teste@example.com")

    def test_login_wrong_password(self):
        resp = self.client.post("/auth/login", json={"email": "teste@example.com", "password": "errada"})
        self.assertEqual(resp.status_code, 401)


class CardEndpointTests(ApiTestCase):
    def test_create_list_and_soft_delete_card(self):
        account = self.post("/accounts", {"name": "Nubank", "saldo_inicial": 500}).json()
        resp = self.post(
            "/cards",
            {"name": "Roxinho", "brand": "Mastercard", "closing_day": 5, "due_day": 15, "limit_total": 3000,
             "conta_bancaria_id": account["id"]},
        )
        self.assertEqual(resp.status_code, 201)
        card = resp.json()
        self.assertEqual(card["limit_used"], 0)

        self.post("/transactions", {"tipo": "despesa", "descricao": "Mercado", "valor": 80,
                                    "data_vencimento": "2025-02-20", "cartao_credito_id": card["id"]})
        listed = self.get("/cards").json()
        self.assertEqual(len(listed), 1)
        self.assertEqual(listed[0]["limit_used"], 80)

        self.assertEqual(self.client.delete(f"/cards/{card['id']}", headers=self.headers).status_code, 200)
        self.assertEqual(self.get("/cards").json(), [])
        self.assertIsNotNone(repo.get_credit_card(card["id"], user_id=self.uid))

    def test_invalid_closing_day_is_400(self):
        resp = self.post("/cards", {"name": "X", "closing_day": 0, "due_day": 10})
        self.assertEqual(resp.status_code, 400)
        self.assertIn("closing_day", resp.json()["error"])

    def test_update_unknown_card_is_404(self):
        resp = self.client.put("/cards/999", json={"name": "X", "closing_day": 1, "due_day": 10}, headers=self.headers)
        self.assertEqual(resp.status_code, 404)


class InvoiceEndpointTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.account_id = self.make_account(saldo=1000)
        self.card = self.make_card(conta_bancaria_id=self.account_id)
        categoria = repo.ensure_category("Mercado", "despesa", user_id=self.uid)
        self.add_tx(100, "2025-02-20", card_id=self.card["id"], categoria_id=categoria)
        self.add_tx(50, "2025-03-05", card_id=self.card["id"])
        self.add_tx(30, "2025-02-10", card_id=self.card["id"])
        self.query = {"card_id": self.card["id"], "mes": 3, "ano": 2025}

    def test_statement(self):
        resp = self.post("/card-invoices/statement", self.query)
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["total"], 130.0)
        self.assertEqual(len(body["transacoes"]), 2)
        self.assertEqual(body["fatura"]["status"], "aberta")

        listed = self.get("/card-invoices", card_id=self.card["id"]).json()
        self.assertEqual([(f["mes_referencia"], f["ano_referencia"]) for f in listed], [(3, 2025)])

    def test_statement_unknown_card_is_404(self):
        resp = self.post("/card-invoices/statement", {"card_id": 999, "mes": 3, "ano": 2025})
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json(), {"error": "Cartão não encontrado"})

    def test_statement_missing_field_is_400(self):
        resp = self.post("/card-invoices/statement", {"card_id": self.card["id"], "mes": 3})
        self.assertEqual(resp.status_code, 400)
        self.assertIn("ano", resp.json()["error"])

    def test_close_and_pay_flow(self):
        closed = self.post("/card-invoices/action", {**self.query, "acao": "fechar"})
        self.assertEqual(closed.status_code, 200)
        body = closed.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["transacao"]["valor"], 130.0)
        self.assertEqual(body["fatura"]["status"], "fechada")

        again = self.post("/card-invoices/action", {**self.query, "acao": "fechar"})
        self.assertEqual(again.status_code, 400)
        self.assertIn("fechada", again.json()["error"])

        paid = self.post("/card-invoices/action", {**self.query, "acao": "pagar"})
        self.assertEqual(paid.status_code, 200)
        self.assertEqual(paid.json()["fatura"]["status"], "paga")
        self.assertEqual(repo.get_account(self.account_id, user_id=self.uid)["saldo_atual"], 870.0)

        reopen = self.post("/card-invoices/action", {**self.query, "acao": "reabrir"})
        self.assertEqual(reopen.status_code, 400)

    def test_invalid_action_is_400(self):
        resp = self.post("/card-invoices/action", {**self.query, "acao": "apagar"})
        self.assertEqual(resp.status_code, 400)

    def test_consolidated_transaction_cannot_be_deleted_directly(self):
        closed = self.post("/card-invoices/action", {**self.query, "acao": "fechar"}).json()
        resp = self.client.delete(f"/transactions/{closed['transacao']['id']}", headers=self.headers)
        self.assertEqual(resp.status_code, 400)

    def test_breakdown_by_category(self):
        body = self.get("/card-invoices/breakdown", **self.query).json()
        self.assertEqual(body["total"], 130.0)
        self.assertEqual([r["categoria"] for r in body["categorias"]], ["Mercado", "Sem categoria"])

    def test_history(self):
        self.post("/card-invoices/statement", self.query)
        self.post("/card-invoices/statement", {**self.query, "mes": 4})
        rows = self.get("/card-invoices/history", card_id=self.card["id"]).json()
        self.assertEqual([r["competencia"] for r in rows], ["2025-03", "2025-04"])
        self.assertEqual(rows[1]["em_aberto"], 50.0)


class TransactionEndpointTests(ApiTestCase):
    def test_paid_transaction_moves_account_balance(self):
        account_id = self.make_account(saldo=200)
        resp = self.post("/transactions", {"tipo": "receita", "descricao": "Salário", "valor": 300,
                                           "data_vencimento": "2025-03-01", "status": "pago",
                                           "conta_bancaria_id": account_id})
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(repo.get_account(account_id, user_id=self.uid)["saldo_atual"], 500.0)

    def test_malformed_due_dates_are_400(self):
        card = self.make_card()
        for raw in ("2025-2-20", "amanha", "20/02/2025"):
            resp = self.post("/transactions", {"tipo": "despesa", "descricao": "Compra", "valor": 10,
                                               "data_vencimento": raw, "cartao_credito_id": card["id"]})
            self.assertEqual(resp.status_code, 400, raw)
            self.assertIn("Data de vencimento", resp.json()["error"])
        self.assertEqual(repo.fetch_transactions(user_id=self.uid), [])

    def test_malformed_payment_date_is_400(self):
        resp = self.post("/transactions", {"tipo": "despesa", "descricao": "X", "valor": 5, "status": "pago",
                                           "data_vencimento": "2025-03-01", "data_pagamento": "ontem"})
        self.assertEqual(resp.status_code, 400)

    def test_accepted_due_date_lands_in_one_statement(self):
        card = self.make_card()
        resp = self.post("/transactions", {"tipo": "despesa", "descricao": "Compra", "valor": 10,
                                           "data_vencimento": " 2025-02-20 ", "cartao_credito_id": card["id"]})
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.json()["data_vencimento"], "2025-02-20")
        totals = [self.post("/card-invoices/statement", {"card_id": card["id"], "mes": m, "ano": 2025}).json()["total"]
                  for m in (2, 3, 4)]
        self.assertEqual(totals, [0.0, 10.0, 0.0])

    def test_list_filter_rejects_malformed_date(self):
        self.assertEqual(self.get("/transactions", data_inicio="2025-13-01").status_code, 400)

    def test_non_positive_value_is_400(self):
        resp = self.post("/transactions", {"tipo": "despesa", "descricao": "X", "valor": 0, "data_vencimento": "2025-03-01"})
        self.assertEqual(resp.status_code, 400)


if __name__ == "__main__":
    unittest.main()
