from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date

_current_user_id: ContextVar[int | None] = ContextVar("current_user_id", default=None)
_frozen_today: ContextVar[date | None] = ContextVar("frozen_today", default=None)


def get_current_user_id(required: bool = True) -> int | None:
    uid = _current_user_id.get()
    if uid is None and required:
        raise RuntimeError("Usuário não autenticado.")
    return uid


@contextmanager
def user_scope(user_id: int):
    token = _current_user_id.set(int(user_id))
    try:
        yield int(user_id)
    finally:
        _current_user_id.reset(token)


def today() -> date:
    return _frozen_today.get() or date.today()


def today_iso() -> str:
    return today().isoformat()


@contextmanager
def frozen_today(value: date):
    """Pin the clock used for payment dates (tests and backfills)."""
    token = _frozen_today.set(value)
    try:
        yield value
    finally:
        _frozen_today.reset(token)
