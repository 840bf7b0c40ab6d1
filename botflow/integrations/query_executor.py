"""Privileged SQL execution for database nodes."""

from typing import Any, Dict, List, Optional

from sqlalchemy import Engine, text
from sqlalchemy.exc import SQLAlchemyError

from ..core.logging import get_logger
from ..storage.database import build_engine, get_database_engine

logger = get_logger(__name__)


class QueryExecutor:
    """Runs parameterless SQL against a configured database."""

    def __init__(self, database_url: Optional[str] = None, timeout: float = 10.0, engine: Optional[Engine] = None):
        self.timeout = timeout
        self._database_url = database_url
        self._engine = engine

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            if self._database_url:
                self._engine = build_engine(self._database_url)
            else:
                self._engine = get_database_engine()
        return self._engine

    def query(self, sql: str) -> List[Dict[str, Any]]:
        """
        Execute one statement and return its rows as dictionaries.

        Statements that return no rows yield `[{"rowcount": n}]`.

        Raises:
            ValueError: If the statement is empty
            SQLAlchemyError: If the database rejects the statement
        """
        if not sql or not sql.strip():
            raise ValueError("SQL statement is empty")

        with self.engine.connect() as connection:
            try:
                if connection.dialect.name == "postgresql":
                    connection.execute(text(f"SET statement_timeout = {int(self.timeout * 1000)}"))
                result = connection.execute(text(sql))
                if result.returns_rows:
                    rows = [dict(row._mapping) for row in result]
                else:
                    rows = [{"rowcount": result.rowcount}]
                connection.commit()
            except SQLAlchemyError:
                connection.rollback()
                raise

        logger.debug(f"Query returned {len(rows)} row(s)")
        return rows
