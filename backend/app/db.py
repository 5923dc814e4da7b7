from contextlib import contextmanager

from fastapi import Request
from psycopg.rows import dict_row

# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import ConnectionPool

from .config import Settings


class Database:
    """Owns the connection pool for one application instance."""

    def __init__(self, settings: Settings):
        # row_factory=dict_row: handlers index rows by column name.
        self._pool = ConnectionPool(
            conninfo=settings.db_url,
            min_size=settings.pool_min_size,
            max_size=settings.pool_max_size,
            kwargs={"row_factory": dict_row},
            open=False,
        )

    def open(self) -> None:
        self._pool.open()

    def close(self) -> None:
        self._pool.close()

    @contextmanager
    def conn(self):
        # `with db.conn() as conn:` commits on success, rolls back on exception,
        # and returns the connection to the pool.
        with self._pool.connection() as conn:
            yield conn

    def ping(self) -> None:
        with self.conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                cur.fetchone()


def get_db(request: Request) -> Database:
    return request.app.state.db
