import pandas as pd

import repo
from context import get_current_user_id
from cycle import compute_period
from errors import NotFoundError


def _uid(user_id: int | None = None) -> int:
    return int(user_id) if user_id is not None else int(get_current_user_id())


def _df_statement(card_id: int, mes: int, ano: int, user_id: int | None = None) -> pd.DataFrame:
    uid = _uid(user_id)
    card = repo.get_credit_card(card_id, user_id=uid)
    if not card:
        raise NotFoundError("Cartão não encontrado")
    period = compute_period(int(card["closing_day"]), int(card["due_day"]), int(mes), int(ano))
    rows = repo.fetch_card_transactions_in_period(
        card_id, period.start.isoformat(), period.end.isoformat(), user_id=uid
    )
    df = pd.DataFrame(rows)
    if df.empty:
        return df

    categories = {int(c["id"]): c["name"] for c in repo.list_categories(user_id=uid)}
    df["categoria"] = df["categoria_id"].map(
        lambda cid: categories.get(int(cid), "Sem categoria") if pd.notna(cid) else "Sem categoria"
    )
    df["valor"] = pd.to_numeric(df["valor"], errors="coerce").fillna(0.0)
    return df


def statement_by_category(card_id: int, mes: int, ano: int, user_id: int | None = None) -> list[dict]:
    """Statement total broken down by category, largest first."""
    df = _df_statement(card_id, mes, ano, user_id=user_id)
    if df.empty:
        return []

    grouped = (
        df.groupby("categoria", dropna=False)
        .agg(total=("valor", "sum"), quantidade=("id", "count"))
        .reset_index()
        .sort_values(["total", "categoria"], ascending=[False, True])
    )
    overall = float(grouped["total"].sum())
    grouped["total"] = grouped["total"].round(2)
    grouped["percentual"] = (grouped["total"] / overall * 100).round(2) if overall else 0.0
    return [
        {
            "categoria": str(r.categoria),
            "total": float(r.total),
            "quantidade": int(r.quantidade),
            "percentual": float(r.percentual),
        }
        for r in grouped.itertuples(index=False)
    ]


def invoice_history(card_id: int, user_id: int | None = None) -> pd.DataFrame:
    uid = _uid(user_id)
    rows = repo.list_invoices(card_id=card_id, user_id=uid)
    df = pd.DataFrame(rows)
    if df.empty:
        return df
    df["valor_total"] = pd.to_numeric(df["valor_total"], errors="coerce").fillna(0.0)
    df["valor_pago"] = pd.to_numeric(df["valor_pago"], errors="coerce").fillna(0.0)
    df["em_aberto"] = (df["valor_total"] - df["valor_pago"]).clip(lower=0).round(2)
    df["competencia"] = df["ano_referencia"].astype(str) + "-" + df["mes_referencia"].astype(int).map("{:02d}".format)
    return df.sort_values("competencia").reset_index(drop=True)


def invoice_history_records(card_id: int, user_id: int | None = None) -> list[dict]:
    df = invoice_history(card_id, user_id=user_id)
    if df.empty:
        return []
    return df.astype(object).where(pd.notna(df), None).to_dict(orient="records")
