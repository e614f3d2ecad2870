"""Card used-limit reconciliation.

``limit_used`` on a card is only a cache: the authoritative value is the sum
of its pending/overdue expenses, recomputed here.
"""

import logging
from decimal import Decimal

import repo
from context import get_current_user_id
from errors import BillingError, NotFoundError
from utils import to_money

logger = logging.getLogger(__name__)

LIMIT_EPSILON = Decimal("0.01")
OPEN_STATUSES = frozenset(repo.OPEN_TX_STATUSES)


def _uid(user_id: int | None = None) -> int:
    return int(user_id) if user_id is not None else int(get_current_user_id())


def used_limit(transactions) -> Decimal:
    total = Decimal("0.00")
    for tx in transactions:
        if tx["tipo"] == "despesa" and tx["status"] in OPEN_STATUSES:
            total += to_money(tx["valor"])
    return to_money(total)


def reconcile_card_limit(card_id: int, user_id: int | None = None, persist: bool = True) -> Decimal:
    uid = _uid(user_id)
    if not repo.get_credit_card(card_id, user_id=uid):
        raise NotFoundError("Cartão não encontrado")
    value = used_limit(repo.fetch_card_open_expenses(card_id, user_id=uid))
    if persist:
        repo.set_card_limit_used(card_id, value, user_id=uid)
    return value


def refresh_card_limits(cards: list[dict], user_id: int | None = None) -> list[dict]:
    """Bring ``limit_used`` of each listed card in line with its open expenses.

    Best effort: a store failure on one card is logged and the cached value is
    kept for that card.
    """
    uid = _uid(user_id)
    out = []
    for card in cards:
        card = dict(card)
        try:
            fresh = used_limit(repo.fetch_card_open_expenses(card["id"], user_id=uid))
            if abs(fresh - to_money(card.get("limit_used"))) > LIMIT_EPSILON:
                repo.set_card_limit_used(card["id"], fresh, user_id=uid)
                logger.info("limit_used do cartão %s ajustado de %s para %s", card["id"], card.get("limit_used"), fresh)
            card["limit_used"] = float(fresh)
        except BillingError as e:
            logger.warning("Falha ao reconciliar limite do cartão %s: %s", card.get("id"), e)
        out.append(card)
    return out
