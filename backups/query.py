"""
backups/query.py -- Admin SQL console.

Statements are classified by their leading keyword:
  SELECT / INSERT / UPDATE   run directly
  DELETE                     runs only when the caller typed "delete" to confirm
  DROP / TRUNCATE / ALTER    always refused
  anything else              treated as SELECT for logging purposes

Every statement that reaches the database is recorded in the query execution
log and the audit trail, whether it succeeds or fails. Refused statements
never reach the database and are not logged.

On PostgreSQL the statement runs under SET LOCAL statement_timeout taken from
the database settings (maxQueryExecutionTime, seconds).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from audit.models import STATUS_FAILURE, STATUS_SUCCESS, AuditLog
from audit.store import AuditStore
from auth.models import User
from backups.models import QueryExecutionLog
from backups.store import BackupStore

logger = logging.getLogger("pcvisor.query")

FORBIDDEN_PREFIXES = ("DROP", "TRUNCATE", "ALTER")
DELETE_CONFIRMATION = "delete"
# Cap on rows returned to the browser for a single SELECT.
MAX_RESULT_ROWS = 1000


class QueryForbidden(Exception):
    pass


class ConfirmationRequired(Exception):
    pass


@dataclass
class QueryOutcome:
    success: bool
    query_type: str
    execution_time: str
    rows_affected: str = "0"
    rows: list[dict] = field(default_factory=list)
    error: str | None = None


def classify_query(query: str) -> str:
    """Return SELECT, INSERT, UPDATE or DELETE; raise QueryForbidden for DDL."""
    head = query.strip().upper()
    if head.startswith(FORBIDDEN_PREFIXES):
        raise QueryForbidden("DROP, TRUNCATE, and ALTER statements are not allowed")
    for kind in ("INSERT", "UPDATE", "DELETE", "SELECT"):
        if head.startswith(kind):
            return kind
    return "SELECT"


class QueryConsole:
    def __init__(self, backup_store: BackupStore, audit_store: AuditStore) -> None:
        self.backup_store = backup_store
        self.audit_store = audit_store

    def execute(
        self,
        query: str,
        user: User,
        confirm_delete: str | None = None,
        timeout_seconds: int = 30,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> QueryOutcome:
        """Run query for user. Raises QueryForbidden / ConfirmationRequired before execution."""
        query_type = classify_query(query)
        if query_type == "DELETE" and confirm_delete != DELETE_CONFIRMATION:
            raise ConfirmationRequired("DELETE queries require confirmation. Please type 'delete' to confirm.")

        engine = self.backup_store.engine
        start = time.perf_counter()
        try:
            with engine.begin() as conn:
                if engine.dialect.name == "postgresql" and timeout_seconds > 0:
                    conn.execute(text(f"SET LOCAL statement_timeout = {int(timeout_seconds) * 1000}"))
                result = conn.execute(text(query))
                if result.returns_rows:
                    rows = [dict(r._mapping) for r in result.fetchmany(MAX_RESULT_ROWS)]
                    rows_affected = len(rows)
                else:
                    rows = []
                    rows_affected = max(result.rowcount, 0)
        except SQLAlchemyError as e:
            elapsed = f"{int((time.perf_counter() - start) * 1000)}ms"
            message = str(getattr(e, "orig", None) or e)
            logger.warning("Console query by %s failed: %s", user.username, message)
            self._log(query, query_type, "failed", None, elapsed, message, user)
            self._audit(f"Query failed: {message}", STATUS_FAILURE, user, ip_address, user_agent)
            return QueryOutcome(success=False, query_type=query_type, execution_time=elapsed, error=message)

        elapsed = f"{int((time.perf_counter() - start) * 1000)}ms"
        self._log(query, query_type, "success", str(rows_affected), elapsed, None, user)
        self._audit(
            f"Executed {query_type} query. Rows affected: {rows_affected}",
            STATUS_SUCCESS,
            user,
            ip_address,
            user_agent,
        )
        return QueryOutcome(
            success=True,
            query_type=query_type,
            execution_time=elapsed,
            rows_affected=str(rows_affected),
            rows=rows,
        )

    def _log(self, query, query_type, status, rows_affected, elapsed, error, user: User) -> None:
        self.backup_store.create_query_log(
            QueryExecutionLog(
                query=query,
                query_type=query_type,
                status=status,
                rows_affected=rows_affected,
                execution_time=elapsed,
                error_message=error,
                executed_by_user_id=user.id,
                executed_by_username=user.username,
            )
        )

    def _audit(self, details: str, status: str, user: User, ip_address, user_agent) -> None:
        self.audit_store.record(
            AuditLog(
                action="execute_query",
                category="data",
                user_id=user.id,
                username=user.username,
                resource_type="database",
                details=details,
                ip_address=ip_address,
                user_agent=user_agent,
                status=status,
            )
        )
