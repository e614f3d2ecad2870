import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import auth
import db
import repo


class DBTestCase(unittest.TestCase):
    """Test case backed by a throwaway SQLite file with one user."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self._patches = [
            patch.object(db, "SQLITE_PATH", Path(self._tmp.name) / "finance.db"),
            patch.object(db, "USE_POSTGRES", False),
        ]
        for p in self._patches:
            p.start()
        db.init_db()
        self.user = auth.create_user("teste@example.com", "segredo123", "Teste")
        self.uid = int(self.user["id"])

    def tearDown(self):
        for p in reversed(self._patches):
            p.stop()
        self._tmp.cleanup()

    def make_account(self, saldo=1000.0, name="Conta Corrente") -> int:
        return repo.create_account(name, "corrente", bank="Banco X", saldo_inicial=saldo, user_id=self.uid)

    def make_card(self, closing_day=5, due_day=15, conta_bancaria_id=None, name="Cartão Teste") -> dict:
        card_id = repo.create_credit_card(
            name=name,
            brand="Visa",
            closing_day=closing_day,
            due_day=due_day,
            limit_total=5000,
            conta_bancaria_id=conta_bancaria_id,
            user_id=self.uid,
        )
        return repo.get_credit_card(card_id, user_id=self.uid)

    def add_tx(self, valor, due, card_id=None, status="pendente", tipo="despesa", categoria_id=None) -> dict:
        return repo.create_transaction(
            tipo=tipo,
            descricao=f"Compra {due}",
            valor=valor,
            data_vencimento=due,
            status=status,
            categoria_id=categoria_id,
            cartao_credito_id=card_id,
            user_id=self.uid,
        )
