# utils.py
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")


def to_money(x) -> Decimal:
    if x is None or x == "":
        return Decimal("0.00")
    try:
        value = x if isinstance(x, Decimal) else Decimal(str(x))
    except InvalidOperation as e:
        raise ValueError(f"Valor monetário inválido: {x!r}") from e
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_brl(x) -> str:
    # formatação simples pt-BR (sem depender de locale do SO)
    s = f"{to_money(x):,.2f}"
    s = s.replace(",", "X").replace(".", ",").replace("X", ".")
    return f"R$ {s}"
