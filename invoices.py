"""Credit-card invoice (fatura) aggregation and life cycle.

    aberta --fechar--> fechada --pagar--> paga
       ^                  |
       +-----reabrir------+

Every action runs under a lock keyed by (user, card, month, year) and writes
the new status with a compare-and-swap on the previous one. The writes of an
action are grouped in a ``UnitOfWork``: when a later step fails, the steps
already done are undone in reverse order before the error propagates.
"""

import logging
import threading
from contextlib import contextmanager
from decimal import Decimal

import repo
from context import get_current_user_id, today_iso
from cycle import compute_period
from errors import (
    AlreadyOpenError,
    AlreadyPaidError,
    CannotReopenPaidError,
    EmptyInvoiceError,
    InvalidTransitionError,
    MissingAccountError,
    NotClosedError,
    NotFoundError,
    ValidationError,
)
from limits import reconcile_card_limit
from utils import to_money

logger = logging.getLogger(__name__)

INVOICE_CATEGORY = "Fatura Cartão de Crédito"
AUTO_ORIGIN = "fatura_cartao"
ACTIONS = ("fechar", "pagar", "reabrir")

_locks_guard = threading.Lock()
# key -> [lock, number of holders and waiters]
_locks: dict[tuple[int, int, int, int], list] = {}


def _uid(user_id: int | None = None) -> int:
    return int(user_id) if user_id is not None else int(get_current_user_id())


@contextmanager
def invoice_lock(user_id: int, card_id: int, mes: int, ano: int):
    key = (int(user_id), int(card_id), int(mes), int(ano))
    with _locks_guard:
        entry = _locks.setdefault(key, [threading.Lock(), 0])
        entry[1] += 1
    try:
        with entry[0]:
            yield
    finally:
        with _locks_guard:
            entry[1] -= 1
            if entry[1] == 0:
                del _locks[key]


class UnitOfWork:
    def __init__(self, label: str):
        self.label = label
        self._undo: list = []

    def on_rollback(self, fn, *args, **kwargs) -> None:
        self._undo.append((fn, args, kwargs))

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self._undo.clear()
            return False
        logger.warning("Desfazendo '%s' após falha: %s", self.label, exc_val)
        for fn, args, kwargs in reversed(self._undo):
            try:
                fn(*args, **kwargs)
            except Exception:
                logger.exception("Falha ao desfazer etapa %s de '%s'", getattr(fn, "__name__", fn), self.label)
        self._undo.clear()
        return False


def _log_context(uid: int, card_id: int, mes: int, ano: int, acao: str) -> dict:
    return {"user_id": uid, "card_id": card_id, "mes": int(mes), "ano": int(ano), "acao": acao}


def _load_card(card_id: int, uid: int) -> dict:
    card = repo.get_credit_card(card_id, user_id=uid)
    if not card:
        raise NotFoundError("Cartão não encontrado")
    return card


def _period_for(card: dict, mes: int, ano: int):
    return compute_period(int(card["closing_day"]), int(card["due_day"]), int(mes), int(ano))


def aggregate_invoice(card_id: int, mes: int, ano: int, user_id: int | None = None) -> dict:
    """Statement transactions and total for ``(mes, ano)``; upserts the invoice row."""
    uid = _uid(user_id)
    card = _load_card(card_id, uid)
    period = _period_for(card, mes, ano)

    transacoes = repo.fetch_card_transactions_in_period(
        card_id,
        period.start.isoformat(),
        period.end.isoformat(),
        user_id=uid,
    )
    total = to_money(sum((to_money(t["valor"]) for t in transacoes), Decimal("0")))
    fatura = repo.upsert_invoice_totals(
        card_id,
        mes,
        ano,
        data_fechamento=period.end.isoformat(),
        data_vencimento=period.due.isoformat(),
        valor_total=total,
        user_id=uid,
    )
    return {"transacoes": transacoes, "total": total, "fatura": fatura}


def act_on_invoice(
    card_id: int,
    mes: int,
    ano: int,
    acao: str,
    conta_bancaria_id: int | None = None,
    user_id: int | None = None,
) -> dict:
    action = (acao or "").strip().lower()
    if action not in ACTIONS:
        raise ValidationError("Ação inválida. Use 'fechar', 'pagar' ou 'reabrir'.")
    uid = _uid(user_id)
    card = _load_card(card_id, uid)
    _period_for(card, mes, ano)

    with invoice_lock(uid, card_id, mes, ano):
        if action == "fechar":
            return close_invoice(card, mes, ano, conta_bancaria_id, user_id=uid)
        if action == "pagar":
            return pay_invoice(card, mes, ano, conta_bancaria_id, user_id=uid)
        return reopen_invoice(card, mes, ano, user_id=uid)


def close_invoice(card: dict, mes: int, ano: int, conta_bancaria_id: int | None = None, user_id: int | None = None) -> dict:
    uid = _uid(user_id)
    card_id = int(card["id"])
    existing = repo.get_invoice(card_id, mes, ano, user_id=uid)
    if existing and existing["status"] != "aberta":
        raise InvalidTransitionError(
            f"Fatura não pode ser fechada: status atual '{existing['status']}'.",
            existing["status"],
        )

    fatura = aggregate_invoice(card_id, mes, ano, user_id=uid)["fatura"]
    total = to_money(fatura["valor_total"])
    if total <= 0:
        raise EmptyInvoiceError("Fatura sem valor para fechar.")

    period = _period_for(card, mes, ano)
    account_id = conta_bancaria_id if conta_bancaria_id is not None else card.get("conta_bancaria_id")

    with UnitOfWork("fechar") as uow:
        categoria_id = repo.ensure_category(INVOICE_CATEGORY, "despesa", user_id=uid)
        transacao = repo.create_transaction(
            tipo="despesa",
            descricao=f"Fatura {card['name']} {int(mes):02d}/{int(ano)}",
            valor=total,
            data_vencimento=fatura["data_vencimento"],
            status="pendente",
            categoria_id=categoria_id,
            conta_bancaria_id=account_id,
            origem_integracao=AUTO_ORIGIN,
            observacoes=f"Fatura consolidada do cartão {card['name']}",
            user_id=uid,
        )
        uow.on_rollback(repo.delete_transaction, transacao["id"], user_id=uid)

        repo.update_invoice_status(
            fatura["id"], "aberta", "fechada", user_id=uid, transacao_pagamento_id=transacao["id"]
        )
        uow.on_rollback(
            repo.update_invoice_status, fatura["id"], "fechada", "aberta", user_id=uid, transacao_pagamento_id=None
        )

        previous = repo.mark_period_transactions_paid(
            card_id,
            period.start.isoformat(),
            period.end.isoformat(),
            today_iso(),
            user_id=uid,
        )
        uow.on_rollback(repo.restore_transaction_statuses, previous, user_id=uid)

        limit_before = repo.get_credit_card(card_id, user_id=uid)["limit_used"]
        repo.set_card_limit_used(card_id, 0, user_id=uid)
        uow.on_rollback(repo.set_card_limit_used, card_id, limit_before, user_id=uid)

    logger.info(
        "Fatura %s/%s do cartão %s fechada: total %s, transação %s, %d lançamento(s) baixado(s)",
        mes, ano, card_id, total, transacao["id"], len(previous),
        extra=_log_context(uid, card_id, mes, ano, "fechar"),
    )
    return {
        "success": True,
        "message": "Fatura fechada com sucesso",
        "transacao": transacao,
        "fatura": repo.get_invoice(card_id, mes, ano, user_id=uid),
    }


def pay_invoice(card: dict, mes: int, ano: int, conta_bancaria_id: int | None = None, user_id: int | None = None) -> dict:
    uid = _uid(user_id)
    card_id = int(card["id"])
    fatura = repo.get_invoice(card_id, mes, ano, user_id=uid)
    if not fatura:
        raise NotFoundError("Fatura não encontrada")
    status = fatura["status"]
    if status == "paga":
        raise AlreadyPaidError("Fatura já está paga.", status)
    if status != "fechada":
        raise NotClosedError(f"Fatura precisa estar fechada para ser paga (status atual '{status}').", status)

    account_id = conta_bancaria_id if conta_bancaria_id is not None else card.get("conta_bancaria_id")
    if account_id is None:
        raise MissingAccountError("Informe a conta bancária para pagamento da fatura.")
    if not repo.get_account(account_id, user_id=uid):
        raise NotFoundError("Conta bancária não encontrada")

    total = to_money(fatura["valor_total"])
    tx_id = fatura["transacao_pagamento_id"]

    with UnitOfWork("pagar") as uow:
        if tx_id is not None:
            before = repo.get_transaction(tx_id, user_id=uid)
            repo.update_transaction_payment(tx_id, "pago", today_iso(), account_id, user_id=uid)
            if before:
                uow.on_rollback(repo.restore_transaction_payment, before, user_id=uid)

        repo.adjust_account_balance(account_id, -total, user_id=uid)
        uow.on_rollback(repo.adjust_account_balance, account_id, total, user_id=uid)

        repo.update_invoice_status(fatura["id"], "fechada", "paga", user_id=uid, valor_pago=total)

    logger.info(
        "Fatura %s/%s do cartão %s paga: %s debitado da conta %s", mes, ano, card_id, total, account_id,
        extra=_log_context(uid, card_id, mes, ano, "pagar"),
    )
    return {
        "success": True,
        "message": "Fatura paga com sucesso",
        "transacao": repo.get_transaction(tx_id, user_id=uid) if tx_id is not None else None,
        "fatura": repo.get_invoice(card_id, mes, ano, user_id=uid),
    }


def reopen_invoice(card: dict, mes: int, ano: int, user_id: int | None = None) -> dict:
    # Lançamentos do período baixados no fechamento continuam 'pago'.
    uid = _uid(user_id)
    card_id = int(card["id"])
    fatura = repo.get_invoice(card_id, mes, ano, user_id=uid)
    if not fatura:
        raise NotFoundError("Fatura não encontrada")
    status = fatura["status"]
    if status == "aberta":
        raise AlreadyOpenError("Fatura já está aberta.", status)
    if status == "paga":
        raise CannotReopenPaidError("Fatura paga não pode ser reaberta.", status)

    tx_id = fatura["transacao_pagamento_id"]
    removed = None

    with UnitOfWork("reabrir") as uow:
        if tx_id is not None:
            removed = repo.get_transaction(tx_id, user_id=uid)
            if removed:
                repo.delete_transaction(tx_id, user_id=uid)
                uow.on_rollback(repo.restore_transaction, removed, user_id=uid)

        repo.update_invoice_status(fatura["id"], "fechada", "aberta", user_id=uid, transacao_pagamento_id=None)
        uow.on_rollback(
            repo.update_invoice_status, fatura["id"], "aberta", "fechada", user_id=uid, transacao_pagamento_id=tx_id
        )

        limit_used = reconcile_card_limit(card_id, user_id=uid)

    logger.info(
        "Fatura %s/%s do cartão %s reaberta; limite usado recalculado: %s", mes, ano, card_id, limit_used,
        extra=_log_context(uid, card_id, mes, ano, "reabrir"),
    )
    return {
        "success": True,
        "message": "Fatura reaberta com sucesso",
        "transacao": removed,
        "fatura": repo.get_invoice(card_id, mes, ano, user_id=uid),
    }
