from typing import Literal

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    token: str
    user: dict


class AccountCreateRequest(BaseModel):
    name: str
    type: str = "corrente"
    bank: str | None = None
    saldo_inicial: float = 0.0


class CategoryCreateRequest(BaseModel):
    name: str
    tipo: Literal["receita", "despesa"] = "despesa"


class TransactionCreateRequest(BaseModel):
    tipo: Literal["receita", "despesa"]
    descricao: str
    valor: float
    data_vencimento: str
    status: Literal["pendente", "atrasado", "pago", "cancelado"] = "pendente"
    data_pagamento: str | None = None
    categoria_id: int | None = None
    conta_bancaria_id: int | None = None
    cartao_credito_id: int | None = None
    observacoes: str | None = None


class CreditCardRequest(BaseModel):
    name: str
    brand: str | None = None
    bank: str | None = None
    last_digits: str | None = None
    limit_total: float = Field(default=0.0, ge=0)
    closing_day: int = Field(ge=1, le=31)
    due_day: int = Field(ge=1, le=31)
    conta_bancaria_id: int | None = None
    franquia_id: int | None = None
    is_pessoal: bool = True


class InvoiceQueryRequest(BaseModel):
    card_id: int
    mes: int = Field(ge=1, le=12)
    ano: int = Field(ge=1900, le=9999)


class InvoiceActionRequest(InvoiceQueryRequest):
    acao: Literal["fechar", "pagar", "reabrir"]
    conta_bancaria_id: int | None = None
