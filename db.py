import re
import sqlite3

from config import settings
from errors import StoreError

SQLITE_PATH = settings.sqlite_path
DATABASE_URL = settings.database_url
USE_POSTGRES = settings.use_postgres


def _driver_errors(use_postgres: bool) -> tuple[type[BaseException], ...]:
    if use_postgres:
        import psycopg

        return (psycopg.Error,)
    return (sqlite3.Error,)


class DBCursor:
    def __init__(self, cursor, use_postgres: bool):
        self._cursor = cursor
        self._use_postgres = use_postgres
        self._errors = _driver_errors(use_postgres)

    def execute(self, query: str, params: tuple | list | None = None):
        q = _adapt_query(query, self._use_postgres)
        try:
            self._cursor.execute(q, tuple(params or ()))
        except self._errors as e:
            raise StoreError(f"Erro no banco de dados: {e}") from e
        return self

    def fetchone(self):
        return self._cursor.fetchone()

    def fetchall(self):
        return self._cursor.fetchall()

    @property
    def rowcount(self):
        return self._cursor.rowcount


class DBConn:
    def __init__(self, conn, use_postgres: bool):
        self._conn = conn
        self._use_postgres = use_postgres
        self._errors = _driver_errors(use_postgres)

    def execute(self, query: str, params: tuple | list | None = None):
        q = _adapt_query(query, self._use_postgres)
        try:
            return self._conn.execute(q, tuple(params or ()))
        except self._errors as e:
            raise StoreError(f"Erro no banco de dados: {e}") from e

    def cursor(self):
        return DBCursor(self._conn.cursor(), self._use_postgres)

    def commit(self):
        try:
            self._conn.commit()
        except self._errors as e:
            raise StoreError(f"Erro ao gravar no banco de dados: {e}") from e

    def rollback(self):
        self._conn.rollback()

    def close(self):
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type:
                self.rollback()
            else:
                self.commit()
        finally:
            self.close()
        return False


def _adapt_query(query: str, use_postgres: bool) -> str:
    if not use_postgres:
        return query

    q = query

    # SQLite -> Postgres compatibility for "INSERT OR IGNORE"
    if re.match(r"^\s*INSERT\s+OR\s+IGNORE\s+INTO\s+", q, re.IGNORECASE):
        q = re.sub(r"^\s*INSERT\s+OR\s+IGNORE\s+INTO\s+", "INSERT INTO ", q, flags=re.IGNORECASE)
        if "ON CONFLICT" not in q.upper():
            q = q.rstrip().rstrip(";") + " ON CONFLICT DO NOTHING"

    # sqlite qmark style -> psycopg format style
    q = q.replace("?", "%s")
    return q


def get_conn() -> DBConn:
    if USE_POSTGRES:
        try:
            import psycopg
            from psycopg.rows import dict_row
        except ImportError as e:
            raise RuntimeError(
                "PostgreSQL habilitado via DATABASE_URL, mas psycopg não está instalado."
            ) from e

        raw = psycopg.connect(DATABASE_URL, row_factory=dict_row)
        return DBConn(raw, use_postgres=True)

    SQLITE_PATH.parent.mkdir(parents=True, exist_ok=True)
    raw = sqlite3.connect(SQLITE_PATH, check_same_thread=False, timeout=30.0)
    raw.execute("PRAGMA journal_mode=WAL;")
    raw.execute("PRAGMA busy_timeout=30000;")
    raw.execute("PRAGMA synchronous=NORMAL;")
    raw.row_factory = sqlite3.Row
    return DBConn(raw, use_postgres=False)


def _sqlite_schema(cur):
    cur.execute("""
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        display_name TEXT,
        role TEXT NOT NULL DEFAULT 'user',
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL DEFAULT (datetime('now'))
    );
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS accounts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        bank TEXT,
        type TEXT NOT NULL DEFAULT 'corrente',
        saldo_inicial REAL NOT NULL DEFAULT 0,
        saldo_atual REAL NOT NULL DEFAULT 0,
        ativa INTEGER NOT NULL DEFAULT 1,
        user_id INTEGER NOT NULL,
        created_at TEXT NOT NULL DEFAULT (datetime('now'))
    );
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS categories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        tipo TEXT NOT NULL DEFAULT 'despesa',
        user_id INTEGER NOT NULL,
        created_at TEXT NOT NULL DEFAULT (datetime('now'))
    );
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS credit_cards (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        brand TEXT NOT NULL DEFAULT 'Visa',
        bank TEXT,
        last_digits TEXT,
        limit_total REAL NOT NULL DEFAULT 0,
        limit_used REAL NOT NULL DEFAULT 0,
        closing_day INTEGER NOT NULL,
        due_day INTEGER NOT NULL,
        conta_bancaria_id INTEGER,
        franquia_id INTEGER,
        is_pessoal INTEGER NOT NULL DEFAULT 1,
        ativo INTEGER NOT NULL DEFAULT 1,
        user_id INTEGER NOT NULL,
        created_at TEXT NOT NULL DEFAULT (datetime('now')),
        updated_at TEXT,
        FOREIGN KEY(conta_bancaria_id) REFERENCES accounts(id)
    );
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS transactions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        tipo TEXT NOT NULL,
        descricao TEXT NOT NULL,
        valor REAL NOT NULL,
        data_vencimento TEXT NOT NULL,
        data_pagamento TEXT,
        status TEXT NOT NULL DEFAULT 'pendente',
        categoria_id INTEGER,
        conta_bancaria_id INTEGER,
        cartao_credito_id INTEGER,
        origem_integracao TEXT,
        observacoes TEXT,
        user_id INTEGER NOT NULL,
        created_at TEXT NOT NULL DEFAULT (datetime('now')),
        FOREIGN KEY(categoria_id) REFERENCES categories(id),
        FOREIGN KEY(conta_bancaria_id) REFERENCES accounts(id),
        FOREIGN KEY(cartao_credito_id) REFERENCES credit_cards(id)
    );
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS credit_card_invoices (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        cartao_credito_id INTEGER NOT NULL,
        mes_referencia INTEGER NOT NULL,
        ano_referencia INTEGER NOT NULL,
        data_fechamento TEXT NOT NULL,
        data_vencimento TEXT NOT NULL,
        valor_total REAL NOT NULL DEFAULT 0,
        valor_pago REAL NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'aberta',
        transacao_pagamento_id INTEGER,
        user_id INTEGER NOT NULL,
        created_at TEXT NOT NULL DEFAULT (datetime('now')),
        FOREIGN KEY(cartao_credito_id) REFERENCES credit_cards(id)
    );
    """)

    _indexes(cur)


def _postgres_schema(cur):
    cur.execute("""
    CREATE TABLE IF NOT EXISTS users (
        id BIGSERIAL PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        display_name TEXT,
        role TEXT NOT NULL DEFAULT 'user',
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMP NOT NULL DEFAULT NOW()
    );
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS accounts (
        id BIGSERIAL PRIMARY KEY,
        name TEXT NOT NULL,
        bank TEXT,
        type TEXT NOT NULL DEFAULT 'corrente',
        saldo_inicial DOUBLE PRECISION NOT NULL DEFAULT 0,
        saldo_atual DOUBLE PRECISION NOT NULL DEFAULT 0,
        ativa BOOLEAN NOT NULL DEFAULT TRUE,
        user_id BIGINT NOT NULL,
        created_at TIMESTAMP NOT NULL DEFAULT NOW()
    );
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS categories (
        id BIGSERIAL PRIMARY KEY,
        name TEXT NOT NULL,
        tipo TEXT NOT NULL DEFAULT 'despesa',
        user_id BIGINT NOT NULL,
        created_at TIMESTAMP NOT NULL DEFAULT NOW()
    );
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS credit_cards (
        id BIGSERIAL PRIMARY KEY,
        name TEXT NOT NULL,
        brand TEXT NOT NULL DEFAULT 'Visa',
        bank TEXT,
        last_digits TEXT,
        limit_total DOUBLE PRECISION NOT NULL DEFAULT 0,
        limit_used DOUBLE PRECISION NOT NULL DEFAULT 0,
        closing_day INTEGER NOT NULL,
        due_day INTEGER NOT NULL,
        conta_bancaria_id BIGINT REFERENCES accounts(id),
        franquia_id BIGINT,
        is_pessoal BOOLEAN NOT NULL DEFAULT TRUE,
        ativo BOOLEAN NOT NULL DEFAULT TRUE,
        user_id BIGINT NOT NULL,
        created_at TIMESTAMP NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMP
    );
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS transactions (
        id BIGSERIAL PRIMARY KEY,
        tipo TEXT NOT NULL,
        descricao TEXT NOT NULL,
        valor DOUBLE PRECISION NOT NULL,
        data_vencimento TEXT NOT NULL,
        data_pagamento TEXT,
        status TEXT NOT NULL DEFAULT 'pendente',
        categoria_id BIGINT REFERENCES categories(id),
        conta_bancaria_id BIGINT REFERENCES accounts(id),
        cartao_credito_id BIGINT REFERENCES credit_cards(id),
        origem_integracao TEXT,
        observacoes TEXT,
        user_id BIGINT NOT NULL,
        created_at TIMESTAMP NOT NULL DEFAULT NOW()
    );
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS credit_card_invoices (
        id BIGSERIAL PRIMARY KEY,
        cartao_credito_id BIGINT NOT NULL REFERENCES credit_cards(id),
        mes_referencia INTEGER NOT NULL,
        ano_referencia INTEGER NOT NULL,
        data_fechamento TEXT NOT NULL,
        data_vencimento TEXT NOT NULL,
        valor_total DOUBLE PRECISION NOT NULL DEFAULT 0,
        valor_pago DOUBLE PRECISION NOT NULL DEFAULT 0,
        status TEXT NOT NULL DEFAULT 'aberta',
        transacao_pagamento_id BIGINT,
        user_id BIGINT NOT NULL,
        created_at TIMESTAMP NOT NULL DEFAULT NOW()
    );
    """)

    _indexes(cur)


def _indexes(cur):
    cur.execute("CREATE UNIQUE INDEX IF NOT EXISTS ux_accounts_user_name ON accounts(user_id, name)")
    cur.execute("CREATE UNIQUE INDEX IF NOT EXISTS ux_categories_user_name ON categories(user_id, name)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_cc_cards_user ON credit_cards(user_id)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_tx_user ON transactions(user_id)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_tx_due ON transactions(data_vencimento)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_tx_card_due ON transactions(user_id, cartao_credito_id, data_vencimento)")
    cur.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS ux_cc_inv_card_period "
        "ON credit_card_invoices(user_id, cartao_credito_id, mes_referencia, ano_referencia)"
    )


def init_db() -> None:
    with get_conn() as conn:
        cur = conn.cursor()
        if USE_POSTGRES:
            _postgres_schema(cur)
        else:
            _sqlite_schema(cur)
