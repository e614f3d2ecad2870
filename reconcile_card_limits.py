import argparse
import logging
from collections import defaultdict

import limits
import repo
from config import settings
from context import user_scope
from db import get_conn, init_db
from logs import setup_logging
from utils import to_brl, to_money

logger = logging.getLogger(__name__)


def _user_ids(user_id: int | None = None) -> list[int]:
    if user_id is not None:
        return [int(user_id)]
    conn = get_conn()
    rows = conn.execute("SELECT id FROM users WHERE is_active = TRUE ORDER BY id").fetchall()
    conn.close()
    return [int(r["id"]) for r in rows]


def run(apply: bool = False, user_id: int | None = None) -> dict:
    stats: dict[str, int] = defaultdict(int)
    for uid in _user_ids(user_id):
        with user_scope(uid):
            for card in repo.list_credit_cards():
                stats["cards"] += 1
                fresh = limits.used_limit(repo.fetch_card_open_expenses(card["id"]))
                cached = to_money(card["limit_used"])
                if abs(fresh - cached) <= limits.LIMIT_EPSILON:
                    continue
                stats["divergent"] += 1
                logger.info(
                    "Usuário %s, cartão %s (%s): limite em cache %s, recalculado %s",
                    uid, card["id"], card["name"], to_brl(cached), to_brl(fresh),
                )
                if apply:
                    repo.set_card_limit_used(card["id"], fresh)
                    stats["applied"] += 1
    return dict(stats)


def main():
    parser = argparse.ArgumentParser(
        description="Recalcula o limite usado dos cartões a partir dos lançamentos pendentes/atrasados."
    )
    parser.add_argument("--apply", action="store_true", help="Grava os valores recalculados no banco.")
    parser.add_argument("--user-id", type=int, default=None, help="Restringe a um usuário.")
    args = parser.parse_args()

    setup_logging(settings.log_level, settings.log_format)
    init_db()
    result = run(apply=args.apply, user_id=args.user_id)
    mode = "APPLY" if args.apply else "DRY-RUN"
    print(f"[{mode}] Resultado:")
    for k in sorted(result.keys()):
        print(f"- {k}: {result[k]}")


if __name__ == "__main__":
    main()
