from __future__ import annotations

import logging
from datetime import date as _date
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

import auth
import invoices
import limits
import repo
import reports
from config import settings
from context import today_iso
from db import init_db
from errors import BillingError, NotFoundError, ValidationError
from logs import setup_logging

from .schemas import (
    AccountCreateRequest,
    CategoryCreateRequest,
    CreditCardRequest,
    InvoiceActionRequest,
    InvoiceQueryRequest,
    LoginRequest,
    LoginResponse,
    TransactionCreateRequest,
)
from .security import create_token, token_from_header, verify_token

logger = logging.getLogger(__name__)

app = FastAPI(title="Controle Financeiro API", version="0.2.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?/?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup() -> None:
    setup_logging(settings.log_level, settings.log_format)
    init_db()
    auth.ensure_bootstrap_admin()


@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s falhou: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = sorted({".".join(str(p) for p in err.get("loc", ())[1:]) or "body" for err in exc.errors()})
    return JSONResponse(status_code=400, content={"error": f"Dados inválidos: {', '.join(fields)}"})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Erro inesperado em %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Erro interno do servidor"})


def _money(value: Any) -> float:
    return float(value) if value is not None else 0.0


def _auth_payload(authorization: str | None = Header(default=None)) -> dict:
    token = token_from_header(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")
    payload = verify_token(token)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid token")
    return payload


def _current_user(payload: dict = Depends(_auth_payload)) -> dict:
    user = auth.get_user_by_id(int(payload["uid"]))
    if not user or not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="Invalid user")
    return user


def _iso_date(value: str | None, label: str) -> str | None:
    if value is None:
        return None
    try:
        return _date.fromisoformat(str(value).strip()).isoformat()
    except ValueError:
        raise ValidationError(f"{label} inválida. Use YYYY-MM-DD.")


def _require_account(account_id: int | None, uid: int) -> None:
    if account_id is not None and not repo.get_account(int(account_id), user_id=uid):
        raise NotFoundError("Conta bancária não encontrada")


def _require_active_card(card_id: int, uid: int) -> dict:
    card = repo.get_credit_card(int(card_id), user_id=uid)
    if not card or not bool(card["ativo"]):
        raise NotFoundError("Cartão não encontrado")
    return card


@app.get("/health")
def health() -> dict:
    return {"ok": True}


@app.post("/auth/login", response_model=LoginResponse)
def login(body: LoginRequest) -> LoginResponse:
    user = auth.authenticate_user(body.email, body.password)
    if not user:
        raise HTTPException(status_code=401, detail="Credenciais inválidas")
    token = create_token(int(user["id"]), str(user["email"]))
    return LoginResponse(token=token, user=user)


@app.get("/me")
def me(user: dict = Depends(_current_user)) -> dict:
    return user


@app.get("/accounts")
def list_accounts(user: dict = Depends(_current_user)) -> list[dict]:
    return repo.list_accounts(user_id=int(user["id"]))


@app.post("/accounts", status_code=201)
def create_account(body: AccountCreateRequest, user: dict = Depends(_current_user)) -> dict:
    uid = int(user["id"])
    name = (body.name or "").strip()
    if not name:
        raise ValidationError("Nome da conta é obrigatório")
    account_id = repo.create_account(name, body.type, bank=body.bank, saldo_inicial=body.saldo_inicial, user_id=uid)
    return repo.get_account(account_id, user_id=uid)


@app.get("/categories")
def list_categories(tipo: str | None = None, user: dict = Depends(_current_user)) -> list[dict]:
    return repo.list_categories(tipo=tipo, user_id=int(user["id"]))


@app.post("/categories", status_code=201)
def create_category(body: CategoryCreateRequest, user: dict = Depends(_current_user)) -> dict:
    uid = int(user["id"])
    name = (body.name or "").strip()
    if not name:
        raise ValidationError("Nome da categoria é obrigatório")
    category_id = repo.ensure_category(name, body.tipo, user_id=uid)
    return {"id": category_id, "name": name, "tipo": body.tipo}


@app.get("/transactions")
def list_transactions(
    tipo: str | None = None,
    status: str | None = None,
    data_inicio: str | None = None,
    data_fim: str | None = None,
    cartao_credito_id: int | None = None,
    user: dict = Depends(_current_user),
) -> list[dict]:
    return repo.fetch_transactions(
        tipo=tipo,
        status=status,
        data_inicio=_iso_date(data_inicio, "Data inicial"),
        data_fim=_iso_date(data_fim, "Data final"),
        cartao_credito_id=cartao_credito_id,
        user_id=int(user["id"]),
    )


@app.post("/transactions", status_code=201)
def create_transaction(body: TransactionCreateRequest, user: dict = Depends(_current_user)) -> dict:
    uid = int(user["id"])
    if body.valor <= 0:
        raise ValidationError("Valor deve ser maior que zero")
    desc = (body.descricao or "").strip()
    if not desc:
        raise ValidationError("Descrição é obrigatória")
    due = _iso_date(body.data_vencimento, "Data de vencimento")
    paid = _iso_date(body.data_pagamento, "Data de pagamento")
    _require_account(body.conta_bancaria_id, uid)
    if body.cartao_credito_id is not None:
        _require_active_card(body.cartao_credito_id, uid)

    paid_on = paid or (today_iso() if body.status == "pago" else None)
    tx = repo.create_transaction(
        tipo=body.tipo,
        descricao=desc,
        valor=body.valor,
        data_vencimento=due,
        status=body.status,
        categoria_id=body.categoria_id,
        conta_bancaria_id=body.conta_bancaria_id,
        cartao_credito_id=body.cartao_credito_id,
        data_pagamento=paid_on,
        observacoes=body.observacoes,
        user_id=uid,
    )
    if body.status == "pago" and body.conta_bancaria_id is not None:
        delta = body.valor if body.tipo == "receita" else -body.valor
        repo.adjust_account_balance(body.conta_bancaria_id, delta, user_id=uid)
    return tx


@app.delete("/transactions/{tx_id}")
def delete_transaction(tx_id: int, user: dict = Depends(_current_user)) -> dict:
    uid = int(user["id"])
    tx = repo.get_transaction(tx_id, user_id=uid)
    if not tx:
        raise NotFoundError("Transação não encontrada")
    if tx.get("origem_integracao") == invoices.AUTO_ORIGIN:
        raise ValidationError("Transação gerada pelo fechamento da fatura. Reabra a fatura para removê-la.")
    repo.delete_transaction(tx_id, user_id=uid)
    return {"ok": True}


@app.get("/cards")
def list_cards(user: dict = Depends(_current_user)) -> list[dict]:
    uid = int(user["id"])
    return limits.refresh_card_limits(repo.list_credit_cards(user_id=uid), user_id=uid)


@app.post("/cards", status_code=201)
def create_card(body: CreditCardRequest, user: dict = Depends(_current_user)) -> dict:
    uid = int(user["id"])
    name = (body.name or "").strip()
    if not name:
        raise ValidationError("Nome do cartão é obrigatório")
    _require_account(body.conta_bancaria_id, uid)
    card_id = repo.create_credit_card(
        name=name,
        brand=(body.brand or "").strip() or "Visa",
        closing_day=body.closing_day,
        due_day=body.due_day,
        limit_total=body.limit_total,
        bank=body.bank,
        last_digits=body.last_digits,
        conta_bancaria_id=body.conta_bancaria_id,
        franquia_id=body.franquia_id,
        is_pessoal=body.is_pessoal,
        user_id=uid,
    )
    return repo.get_credit_card(card_id, user_id=uid)


@app.put("/cards/{card_id}")
def update_card(card_id: int, body: CreditCardRequest, user: dict = Depends(_current_user)) -> dict:
    uid = int(user["id"])
    name = (body.name or "").strip()
    if not name:
        raise ValidationError("Nome do cartão é obrigatório")
    _require_account(body.conta_bancaria_id, uid)
    updated = repo.update_credit_card(
        card_id,
        name=name,
        brand=(body.brand or "").strip() or "Visa",
        closing_day=body.closing_day,
        due_day=body.due_day,
        limit_total=body.limit_total,
        bank=body.bank,
        last_digits=body.last_digits,
        conta_bancaria_id=body.conta_bancaria_id,
        franquia_id=body.franquia_id,
        is_pessoal=body.is_pessoal,
        user_id=uid,
    )
    if not updated:
        raise NotFoundError("Cartão não encontrado")
    return repo.get_credit_card(card_id, user_id=uid)


@app.delete("/cards/{card_id}")
def delete_card(card_id: int, user: dict = Depends(_current_user)) -> dict:
    if not repo.deactivate_credit_card(card_id, user_id=int(user["id"])):
        raise NotFoundError("Cartão não encontrado")
    return {"success": True}


@app.get("/card-invoices")
def list_card_invoices(
    card_id: int | None = None,
    ano: int | None = None,
    mes: int | None = Query(default=None, ge=1, le=12),
    user: dict = Depends(_current_user),
) -> list[dict]:
    return repo.list_invoices(card_id=card_id, ano=ano, mes=mes, user_id=int(user["id"]))


@app.post("/card-invoices/statement")
def card_invoice_statement(body: InvoiceQueryRequest, user: dict = Depends(_current_user)) -> dict:
    out = invoices.aggregate_invoice(body.card_id, body.mes, body.ano, user_id=int(user["id"]))
    return {"transacoes": out["transacoes"], "total": _money(out["total"]), "fatura": out["fatura"]}


@app.post("/card-invoices/action")
def card_invoice_action(body: InvoiceActionRequest, user: dict = Depends(_current_user)) -> dict:
    return invoices.act_on_invoice(
        body.card_id,
        body.mes,
        body.ano,
        body.acao,
        conta_bancaria_id=body.conta_bancaria_id,
        user_id=int(user["id"]),
    )


@app.get("/card-invoices/breakdown")
def card_invoice_breakdown(
    card_id: int,
    mes: int = Query(ge=1, le=12),
    ano: int = Query(ge=1900, le=9999),
    user: dict = Depends(_current_user),
) -> dict:
    rows = reports.statement_by_category(card_id, mes, ano, user_id=int(user["id"]))
    return {"categorias": rows, "total": round(sum(r["total"] for r in rows), 2)}


@app.get("/card-invoices/history")
def card_invoice_history(card_id: int, user: dict = Depends(_current_user)) -> list[dict]:
    uid = int(user["id"])
    _require_active_card(card_id, uid)
    return reports.invoice_history_records(card_id, user_id=uid)
