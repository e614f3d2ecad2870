from datetime import date

from db import get_conn
from context import get_current_user_id
from config import settings
from errors import ConcurrentUpdateError, NotFoundError, ValidationError
from utils import to_money

OPEN_TX_STATUSES = ("pendente", "atrasado")
INVOICE_FIELDS = {"transacao_pagamento_id", "valor_pago"}


def _uid(user_id: int | None = None) -> int:
    return int(user_id) if user_id is not None else int(get_current_user_id())


def _dict(row) -> dict | None:
    return dict(row) if row is not None else None


# Accounts


def list_accounts(user_id: int | None = None):
    uid = _uid(user_id)
    conn = get_conn()
    rows = conn.execute(
        """
        SELECT id, name, bank, type, saldo_inicial, saldo_atual
        FROM accounts
        WHERE user_id = ? AND ativa = TRUE
        ORDER BY name
        """,
        (uid,),
    ).fetchall()
    conn.close()
    return [dict(r) for r in rows]


def get_account(account_id: int, user_id: int | None = None) -> dict | None:
    uid = _uid(user_id)
    conn = get_conn()
    row = conn.execute(
        "SELECT id, name, bank, type, saldo_inicial, saldo_atual FROM accounts WHERE id = ? AND user_id = ?",
        (int(account_id), uid),
    ).fetchone()
    conn.close()
    return _dict(row)


def create_account(
    name: str,
    acc_type: str = "corrente",
    bank: str | None = None,
    saldo_inicial: float = 0.0,
    user_id: int | None = None,
) -> int:
    uid = _uid(user_id)
    opening = float(to_money(saldo_inicial))
    conn = get_conn()
    row = conn.execute(
        """
        INSERT INTO accounts(name, bank, type, saldo_inicial, saldo_atual, user_id)
        VALUES (?, ?, ?, ?, ?, ?)
        RETURNING id
        """,
        (name.strip(), (bank or "").strip() or None, acc_type, opening, opening, uid),
    ).fetchone()
    conn.commit()
    conn.close()
    return int(row["id"])


def adjust_account_balance(account_id: int, delta, user_id: int | None = None, retries: int | None = None):
    """Apply ``delta`` to ``saldo_atual`` with compare-and-swap.

    The write only lands if the balance is still the value read; on conflict
    the read is repeated, up to ``retries`` attempts.
    """
    uid = _uid(user_id)
    attempts = int(retries or settings.balance_cas_retries)
    change = to_money(delta)
    conn = get_conn()
    try:
        for _ in range(attempts):
            row = conn.execute(
                "SELECT saldo_atual FROM accounts WHERE id = ? AND user_id = ?",
                (int(account_id), uid),
            ).fetchone()
            if not row:
                raise NotFoundError("Conta bancária não encontrada")
            new_balance = to_money(row["saldo_atual"]) + change
            cur = conn.execute(
                "UPDATE accounts SET saldo_atual = ? WHERE id = ? AND user_id = ? AND saldo_atual = ?",
                (float(new_balance), int(account_id), uid, row["saldo_atual"]),
            )
            conn.commit()
            if cur.rowcount == 1:
                return new_balance
    finally:
        conn.close()
    raise ConcurrentUpdateError("Saldo da conta alterado concorrentemente. Tente novamente.")


# Categories


def list_categories(tipo: str | None = None, user_id: int | None = None):
    uid = _uid(user_id)
    conn = get_conn()
    if tipo:
        rows = conn.execute(
            "SELECT id, name, tipo FROM categories WHERE user_id = ? AND tipo = ? ORDER BY name",
            (uid, tipo),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT id, name, tipo FROM categories WHERE user_id = ? ORDER BY tipo, name",
            (uid,),
        ).fetchall()
    conn.close()
    return [dict(r) for r in rows]


def get_category_by_name(name: str, user_id: int | None = None):
    uid = _uid(user_id)
    conn = get_conn()
    row = conn.execute(
        "SELECT id, name, tipo FROM categories WHERE user_id = ? AND name = ?",
        (uid, name),
    ).fetchone()
    conn.close()
    return _dict(row)


def ensure_category(name: str, tipo: str = "despesa", user_id: int | None = None) -> int:
    uid = _uid(user_id)
    row = get_category_by_name(name, user_id=uid)
    if row:
        return int(row["id"])
    conn = get_conn()
    conn.execute(
        "INSERT OR IGNORE INTO categories(name, tipo, user_id) VALUES (?, ?, ?)",
        (name, tipo, uid),
    )
    conn.commit()
    row = conn.execute(
        "SELECT id FROM categories WHERE user_id = ? AND name = ?",
        (uid, name),
    ).fetchone()
    conn.close()
    return int(row["id"])


# Transactions

_TX_COLUMNS = """
    id, tipo, descricao, valor, data_vencimento, data_pagamento, status,
    categoria_id, conta_bancaria_id, cartao_credito_id, origem_integracao, observacoes
"""


def get_transaction(tx_id: int, user_id: int | None = None) -> dict | None:
    uid = _uid(user_id)
    conn = get_conn()
    row = conn.execute(
        f"SELECT {_TX_COLUMNS} FROM transactions WHERE id = ? AND user_id = ?",
        (int(tx_id), uid),
    ).fetchone()
    conn.close()
    return _dict(row)


def fetch_transactions(
    tipo: str | None = None,
    status: str | None = None,
    data_inicio: str | None = None,
    data_fim: str | None = None,
    cartao_credito_id: int | None = None,
    user_id: int | None = None,
):
    uid = _uid(user_id)
    conn = get_conn()
    q = f"""
        SELECT {_TX_COLUMNS}
        FROM transactions
        WHERE user_id = ?
    """
    params: list = [uid]
    if tipo:
        q += " AND tipo = ?"
        params.append(tipo)
    if status:
        q += " AND status = ?"
        params.append(status)
    if data_inicio:
        q += " AND data_vencimento >= ?"
        params.append(data_inicio)
    if data_fim:
        q += " AND data_vencimento <= ?"
        params.append(data_fim)
    if cartao_credito_id is not None:
        q += " AND cartao_credito_id = ?"
        params.append(int(cartao_credito_id))
    q += " ORDER BY data_vencimento DESC, id DESC"
    rows = conn.execute(q, params).fetchall()
    conn.close()
    return [dict(r) for r in rows]


def create_transaction(
    tipo: str,
    descricao: str,
    valor,
    data_vencimento: str,
    status: str = "pendente",
    categoria_id: int | None = None,
    conta_bancaria_id: int | None = None,
    cartao_credito_id: int | None = None,
    data_pagamento: str | None = None,
    origem_integracao: str | None = None,
    observacoes: str | None = None,
    user_id: int | None = None,
) -> dict:
    try:
        data_vencimento = date.fromisoformat(str(data_vencimento)).isoformat()
        if data_pagamento:
            data_pagamento = date.fromisoformat(str(data_pagamento)).isoformat()
    except ValueError as e:
        raise ValidationError(f"Data inválida: {e}") from e
    uid = _uid(user_id)
    conn = get_conn()
    row = conn.execute(
        """
        INSERT INTO transactions(
            tipo, descricao, valor, data_vencimento, data_pagamento, status,
            categoria_id, conta_bancaria_id, cartao_credito_id, origem_integracao, observacoes, user_id
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        RETURNING id
        """,
        (
            tipo,
            descricao.strip(),
            float(to_money(valor)),
            data_vencimento,
            data_pagamento,
            status,
            int(categoria_id) if categoria_id is not None else None,
            int(conta_bancaria_id) if conta_bancaria_id is not None else None,
            int(cartao_credito_id) if cartao_credito_id is not None else None,
            origem_integracao,
            observacoes.strip() if observacoes else None,
            uid,
        ),
    ).fetchone()
    conn.commit()
    conn.close()
    return get_transaction(int(row["id"]), user_id=uid)


def restore_transaction(tx: dict, user_id: int | None = None) -> None:
    """Re-insert a deleted transaction keeping its original id."""
    uid = _uid(user_id)
    conn = get_conn()
    conn.execute(
        """
        INSERT INTO transactions(
            id, tipo, descricao, valor, data_vencimento, data_pagamento, status,
            categoria_id, conta_bancaria_id, cartao_credito_id, origem_integracao, observacoes, user_id
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            int(tx["id"]),
            tx["tipo"],
            tx["descricao"],
            float(tx["valor"]),
            tx["data_vencimento"],
            tx.get("data_pagamento"),
            tx["status"],
            tx.get("categoria_id"),
            tx.get("conta_bancaria_id"),
            tx.get("cartao_credito_id"),
            tx.get("origem_integracao"),
            tx.get("observacoes"),
            uid,
        ),
    )
    conn.commit()
    conn.close()


def delete_transaction(tx_id: int, user_id: int | None = None) -> int:
    uid = _uid(user_id)
    conn = get_conn()
    cur = conn.execute(
        "DELETE FROM transactions WHERE id = ? AND user_id = ?",
        (int(tx_id), uid),
    )
    conn.commit()
    conn.close()
    return int(cur.rowcount or 0)


def update_transaction_payment(
    tx_id: int,
    status: str,
    data_pagamento: str | None,
    conta_bancaria_id: int | None = None,
    user_id: int | None = None,
) -> int:
    uid = _uid(user_id)
    conn = get_conn()
    cur = conn.execute(
        """
        UPDATE transactions
        SET status = ?, data_pagamento = ?, conta_bancaria_id = COALESCE(?, conta_bancaria_id)
        WHERE id = ? AND user_id = ?
        """,
        (
            status,
            data_pagamento,
            int(conta_bancaria_id) if conta_bancaria_id is not None else None,
            int(tx_id),
            uid,
        ),
    )
    conn.commit()
    conn.close()
    return int(cur.rowcount or 0)


def fetch_card_transactions_in_period(card_id: int, start: str, end: str, user_id: int | None = None):
    """Card transactions due in ``[start, end)``, newest first."""
    uid = _uid(user_id)
    conn = get_conn()
    rows = conn.execute(
        f"""
        SELECT {_TX_COLUMNS}
        FROM transactions
        WHERE user_id = ? AND cartao_credito_id = ?
          AND data_vencimento >= ? AND data_vencimento < ?
        ORDER BY data_vencimento DESC, id DESC
        """,
        (uid, int(card_id), start, end),
    ).fetchall()
    conn.close()
    return [dict(r) for r in rows]


def fetch_card_open_expenses(card_id: int, user_id: int | None = None):
    uid = _uid(user_id)
    conn = get_conn()
    rows = conn.execute(
        f"""
        SELECT {_TX_COLUMNS}
        FROM transactions
        WHERE user_id = ? AND cartao_credito_id = ?
          AND tipo = 'despesa' AND status IN (?, ?)
        """,
        (uid, int(card_id), *OPEN_TX_STATUSES),
    ).fetchall()
    conn.close()
    return [dict(r) for r in rows]


def mark_period_transactions_paid(
    card_id: int,
    start: str,
    end: str,
    paid_on: str,
    user_id: int | None = None,
) -> list[dict]:
    """Mark pending/overdue card transactions in ``[start, end)`` as paid.

    Returns the previous ``id``/``status``/``data_pagamento`` of each row touched.
    """
    uid = _uid(user_id)
    conn = get_conn()
    rows = conn.execute(
        """
        SELECT id, status, data_pagamento
        FROM transactions
        WHERE user_id = ? AND cartao_credito_id = ?
          AND data_vencimento >= ? AND data_vencimento < ?
          AND status IN (?, ?)
        """,
        (uid, int(card_id), start, end, *OPEN_TX_STATUSES),
    ).fetchall()
    previous = [dict(r) for r in rows]
    for row in previous:
        conn.execute(
            "UPDATE transactions SET status = 'pago', data_pagamento = ? WHERE id = ? AND user_id = ?",
            (paid_on, int(row["id"]), uid),
        )
    conn.commit()
    conn.close()
    return previous


def restore_transaction_payment(before: dict, user_id: int | None = None) -> int:
    """Put back status, payment date and account exactly as in ``before``."""
    uid = _uid(user_id)
    conn = get_conn()
    cur = conn.execute(
        """
        UPDATE transactions
        SET status = ?, data_pagamento = ?, conta_bancaria_id = ?
        WHERE id = ? AND user_id = ?
        """,
        (
            before["status"],
            before.get("data_pagamento"),
            before.get("conta_bancaria_id"),
            int(before["id"]),
            uid,
        ),
    )
    conn.commit()
    conn.close()
    return int(cur.rowcount or 0)


def restore_transaction_statuses(previous: list[dict], user_id: int | None = None) -> None:
    uid = _uid(user_id)
    conn = get_conn()
    for row in previous:
        conn.execute(
            "UPDATE transactions SET status = ?, data_pagamento = ? WHERE id = ? AND user_id = ?",
            (row["status"], row.get("data_pagamento"), int(row["id"]), uid),
        )
    conn.commit()
    conn.close()


# Credit cards

_CARD_COLUMNS = """
    cc.id, cc.name, cc.brand, cc.bank, cc.last_digits, cc.limit_total, cc.limit_used,
    cc.closing_day, cc.due_day, cc.conta_bancaria_id, cc.franquia_id, cc.is_pessoal, cc.ativo
"""


def list_credit_cards(user_id: int | None = None, include_inactive: bool = False):
    uid = _uid(user_id)
    conn = get_conn()
    q = f"""
        SELECT {_CARD_COLUMNS}, a.name AS conta_nome, a.bank AS conta_banco
        FROM credit_cards cc
        LEFT JOIN accounts a ON a.id = cc.conta_bancaria_id AND a.user_id = cc.user_id
        WHERE cc.user_id = ?
    """
    if not include_inactive:
        q += " AND cc.ativo = TRUE"
    q += " ORDER BY cc.name"
    rows = conn.execute(q, (uid,)).fetchall()
    conn.close()
    return [dict(r) for r in rows]


def get_credit_card(card_id: int, user_id: int | None = None) -> dict | None:
    uid = _uid(user_id)
    conn = get_conn()
    row = conn.execute(
        f"SELECT {_CARD_COLUMNS} FROM credit_cards cc WHERE cc.id = ? AND cc.user_id = ?",
        (int(card_id), uid),
    ).fetchone()
    conn.close()
    return _dict(row)


def create_credit_card(
    name: str,
    brand: str,
    closing_day: int,
    due_day: int,
    limit_total=0,
    bank: str | None = None,
    last_digits: str | None = None,
    conta_bancaria_id: int | None = None,
    franquia_id: int | None = None,
    is_pessoal: bool = True,
    user_id: int | None = None,
) -> int:
    uid = _uid(user_id)
    conn = get_conn()
    row = conn.execute(
        """
        INSERT INTO credit_cards(
            name, brand, bank, last_digits, limit_total, limit_used, closing_day, due_day,
            conta_bancaria_id, franquia_id, is_pessoal, user_id
        )
        VALUES (?, ?, ?, ?, ?, 0, ?, ?, ?, ?, ?, ?)
        RETURNING id
        """,
        (
            name.strip(),
            brand.strip(),
            (bank or "").strip() or None,
            (last_digits or "").strip() or None,
            float(to_money(limit_total)),
            int(closing_day),
            int(due_day),
            int(conta_bancaria_id) if conta_bancaria_id is not None else None,
            int(franquia_id) if franquia_id is not None else None,
            bool(is_pessoal),
            uid,
        ),
    ).fetchone()
    conn.commit()
    conn.close()
    return int(row["id"])


def update_credit_card(
    card_id: int,
    name: str,
    brand: str,
    closing_day: int,
    due_day: int,
    limit_total=0,
    bank: str | None = None,
    last_digits: str | None = None,
    conta_bancaria_id: int | None = None,
    franquia_id: int | None = None,
    is_pessoal: bool = True,
    user_id: int | None = None,
) -> int:
    uid = _uid(user_id)
    conn = get_conn()
    cur = conn.execute(
        """
        UPDATE credit_cards
        SET name = ?, brand = ?, bank = ?, last_digits = ?, limit_total = ?, closing_day = ?, due_day = ?,
            conta_bancaria_id = ?, franquia_id = ?, is_pessoal = ?, updated_at = CURRENT_TIMESTAMP
        WHERE id = ? AND user_id = ? AND ativo = TRUE
        """,
        (
            name.strip(),
            brand.strip(),
            (bank or "").strip() or None,
            (last_digits or "").strip() or None,
            float(to_money(limit_total)),
            int(closing_day),
            int(due_day),
            int(conta_bancaria_id) if conta_bancaria_id is not None else None,
            int(franquia_id) if franquia_id is not None else None,
            bool(is_pessoal),
            int(card_id),
            uid,
        ),
    )
    conn.commit()
    conn.close()
    return int(cur.rowcount or 0)


def deactivate_credit_card(card_id: int, user_id: int | None = None) -> int:
    uid = _uid(user_id)
    conn = get_conn()
    cur = conn.execute(
        "UPDATE credit_cards SET ativo = FALSE, updated_at = CURRENT_TIMESTAMP WHERE id = ? AND user_id = ?",
        (int(card_id), uid),
    )
    conn.commit()
    conn.close()
    return int(cur.rowcount or 0)


def set_card_limit_used(card_id: int, value, user_id: int | None = None) -> None:
    uid = _uid(user_id)
    conn = get_conn()
    conn.execute(
        "UPDATE credit_cards SET limit_used = ? WHERE id = ? AND user_id = ?",
        (float(to_money(value)), int(card_id), uid),
    )
    conn.commit()
    conn.close()


# Invoices

_INVOICE_COLUMNS = """
    i.id, i.cartao_credito_id, i.mes_referencia, i.ano_referencia, i.data_fechamento, i.data_vencimento,
    i.valor_total, i.valor_pago, i.status, i.transacao_pagamento_id
"""


def get_invoice(card_id: int, mes: int, ano: int, user_id: int | None = None) -> dict | None:
    uid = _uid(user_id)
    conn = get_conn()
    row = conn.execute(
        f"""
        SELECT {_INVOICE_COLUMNS}
        FROM credit_card_invoices i
        WHERE i.user_id = ? AND i.cartao_credito_id = ? AND i.mes_referencia = ? AND i.ano_referencia = ?
        """,
        (uid, int(card_id), int(mes), int(ano)),
    ).fetchone()
    conn.close()
    return _dict(row)


def list_invoices(
    card_id: int | None = None,
    ano: int | None = None,
    mes: int | None = None,
    user_id: int | None = None,
):
    uid = _uid(user_id)
    conn = get_conn()
    q = f"""
        SELECT {_INVOICE_COLUMNS}, cc.name AS cartao_nome, cc.brand AS cartao_bandeira, cc.bank AS cartao_banco
        FROM credit_card_invoices i
        JOIN credit_cards cc ON cc.id = i.cartao_credito_id AND cc.user_id = i.user_id
        WHERE i.user_id = ?
    """
    params: list = [uid]
    if card_id is not None:
        q += " AND i.cartao_credito_id = ?"
        params.append(int(card_id))
    if ano is not None:
        q += " AND i.ano_referencia = ?"
        params.append(int(ano))
    if mes is not None:
        q += " AND i.mes_referencia = ?"
        params.append(int(mes))
    q += " ORDER BY i.ano_referencia DESC, i.mes_referencia DESC, i.id DESC"
    rows = conn.execute(q, params).fetchall()
    conn.close()
    return [dict(r) for r in rows]


def upsert_invoice_totals(
    card_id: int,
    mes: int,
    ano: int,
    data_fechamento: str,
    data_vencimento: str,
    valor_total,
    user_id: int | None = None,
) -> dict:
    """Create or refresh dates/total of an invoice; ``status`` is left as is."""
    uid = _uid(user_id)
    conn = get_conn()
    conn.execute(
        """
        INSERT INTO credit_card_invoices(
            cartao_credito_id, mes_referencia, ano_referencia, data_fechamento, data_vencimento,
            valor_total, valor_pago, status, user_id
        )
        VALUES (?, ?, ?, ?, ?, ?, 0, 'aberta', ?)
        ON CONFLICT (user_id, cartao_credito_id, mes_referencia, ano_referencia)
        DO UPDATE SET
            data_fechamento = excluded.data_fechamento,
            data_vencimento = excluded.data_vencimento,
            valor_total = excluded.valor_total
        """,
        (int(card_id), int(mes), int(ano), data_fechamento, data_vencimento, float(to_money(valor_total)), uid),
    )
    conn.commit()
    conn.close()
    return get_invoice(card_id, mes, ano, user_id=uid)


def update_invoice_status(
    invoice_id: int,
    expected_status: str,
    new_status: str,
    user_id: int | None = None,
    **fields,
) -> None:
    """Compare-and-swap the invoice status.

    Only lands when the row still has ``expected_status``; otherwise raises
    ``ConcurrentUpdateError``. Extra ``fields`` are limited to
    ``transacao_pagamento_id`` and ``valor_pago``.
    """
    uid = _uid(user_id)
    unknown = set(fields) - INVOICE_FIELDS
    if unknown:
        raise ValueError(f"Campos de fatura não suportados: {sorted(unknown)}")

    sets = ["status = ?"]
    params: list = [new_status]
    for col in sorted(fields):
        value = fields[col]
        if col == "valor_pago":
            value = float(to_money(value))
        sets.append(f"{col} = ?")
        params.append(value)
    params.extend([int(invoice_id), uid, expected_status])

    conn = get_conn()
    cur = conn.execute(
        f"UPDATE credit_card_invoices SET {', '.join(sets)} WHERE id = ? AND user_id = ? AND status = ?",
        params,
    )
    conn.commit()
    conn.close()
    if int(cur.rowcount or 0) != 1:
        raise ConcurrentUpdateError(
            f"Fatura {invoice_id} não está mais com status '{expected_status}'."
        )
