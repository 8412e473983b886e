"""Persistence gateway for expense and project records.

Services depend on the abstract repositories only. The SQLAlchemy
implementations translate database failures into PersistenceError subclasses:
- StaleWriteError: optimistic version check failed (another writer won)
- TransientPersistenceError: database locked / connection dropped
- PersistenceError: anything else (constraint violations, etc.)

Every ledger mutation is a read-modify-write of one whole expense, run under
the per-expense lock from ExpenseLocks and retried by run_with_retry on
stale/transient failures only. Audit entries are written in the same
transaction as the change they describe.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Sequence, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from src.models.expense import Expense
from src.models.project import Project
from src.services.audit_service import AuditService
from src.services.errors import (
    NotFoundError,
    PersistenceError,
    StaleWriteError,
    TransientPersistenceError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class AuditEntry:
    """Audit record for an entity whose id may only exist after flush."""

    entity: Any
    entity_type: str
    action: str
    actor_id: str | None = None
    changes: dict | None = None


class ExpenseRepository(ABC):
    """Durable store for Expense records (payments and documents embedded)."""

    @abstractmethod
    def get(self, expense_id: int) -> Expense:
        """Load a fresh copy of the expense.

        Raises:
            NotFoundError: Unknown expense id
        """

    @abstractmethod
    def save(self, expense: Expense, audits: Sequence[AuditEntry] = ()) -> Expense:
        """Persist the whole record (insert or update) and its audit entries atomically."""

    @abstractmethod
    def delete(self, expense: Expense, audits: Sequence[AuditEntry] = ()) -> None:
        """Remove the expense with its payments and documents."""

    @abstractmethod
    def list_expenses(
        self, project_id: int | None = None, office_only: bool = False
    ) -> List[Expense]:
        """List expenses by expense_date descending, optionally filtered."""


class ProjectRepository(ABC):
    """Durable store for Project records (steps embedded)."""

    @abstractmethod
    def get(self, project_id: int) -> Project:
        """Raises NotFoundError for unknown ids."""

    @abstractmethod
    def save(self, project: Project, audits: Sequence[AuditEntry] = ()) -> Project:
        """Persist the whole record and its audit entries atomically."""


class _SqlAlchemyRepositoryMixin:
    """Shared flush/audit/commit handling."""

    db: Session

    def _write(self, action: str, audits: Sequence[AuditEntry]) -> None:
        """Flush pending changes, log audits with real ids, commit.

        Rolls back and raises a PersistenceError subclass on failure.
        """
        try:
            self.db.flush()
            for entry in audits:
                AuditService.log(
                    self.db,
                    entity_type=entry.entity_type,
                    entity_id=entry.entity.id,
                    action=entry.action,
                    actor_id=entry.actor_id,
                    changes=entry.changes,
                )
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            logger.warning("Stale write during %s: %s", action, e)
            raise StaleWriteError(f"Record changed concurrently during {action}") from e
        except OperationalError as e:
            self.db.rollback()
            logger.error("Transient database error during %s: %s", action, e)
            raise TransientPersistenceError(f"Database unavailable during {action}") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Database error during %s: %s", action, e, exc_info=True)
            raise PersistenceError(f"Database error during {action}") from e


class SqlAlchemyExpenseRepository(_SqlAlchemyRepositoryMixin, ExpenseRepository):
    """Expense repository backed by a SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, expense_id: int) -> Expense:
        try:
            expense = self.db.execute(
                select(Expense)
                .where(Expense.id == expense_id)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        except OperationalError as e:
            self.db.rollback()
            raise TransientPersistenceError(
                f"Database unavailable loading expense {expense_id}"
            ) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to load expense {expense_id}") from e
        if expense is None:
            raise NotFoundError("Expense", expense_id)
        return expense

    def save(self, expense: Expense, audits: Sequence[AuditEntry] = ()) -> Expense:
        self.db.add(expense)
        self._write("expense save", audits)
        self.db.refresh(expense)
        return expense

    def delete(self, expense: Expense, audits: Sequence[AuditEntry] = ()) -> None:
        self.db.delete(expense)
        self._write("expense delete", audits)

    def list_expenses(
        self, project_id: int | None = None, office_only: bool = False
    ) -> List[Expense]:
        stmt = select(Expense)
        if project_id is not None:
            stmt = stmt.where(Expense.project_id == project_id)
        if office_only:
            stmt = stmt.where(Expense.is_office.is_(True))
        stmt = stmt.order_by(Expense.expense_date.desc(), Expense.id.desc())
        try:
            return list(self.db.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError("Failed to list expenses") from e


class SqlAlchemyProjectRepository(_SqlAlchemyRepositoryMixin, ProjectRepository):
    """Project repository backed by a SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, project_id: int) -> Project:
        try:
            project = self.db.get(Project, project_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to load project {project_id}") from e
        if project is None:
            raise NotFoundError("Project", project_id)
        return project

    def save(self, project: Project, audits: Sequence[AuditEntry] = ()) -> Project:
        self.db.add(project)
        self._write("project save", audits)
        self.db.refresh(project)
        return project


class ExpenseLocks:
    """Registry of per-expense-id mutexes.

    Two mutations of the same expense never interleave inside one process;
    the optimistic version column covers writers in other processes.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.Lock] = {}

    def _lock_for(self, expense_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(expense_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[expense_id] = lock
            return lock

    @contextmanager
    def hold(self, expense_id: int) -> Iterator[None]:
        """Hold the mutex for expense_id for the duration of the block."""
        lock = self._lock_for(expense_id)
        with lock:
            yield

    def discard(self, expense_id: int) -> None:
        """Forget the mutex of a deleted expense."""
        with self._guard:
            self._locks.pop(expense_id, None)


# Shared by every service instance in the process
expense_locks = ExpenseLocks()


def run_with_retry(
    operation: Callable[[], T],
    max_retries: int = 3,
    backoff: float = 0.05,
    description: str = "operation",
) -> T:
    """Run a read-modify-write operation, retrying stale/transient failures.

    The operation must re-read its record on every call. Business errors
    (ValidationError, OverpaymentError, ...) and non-transient persistence
    errors propagate immediately.

    Args:
        operation: Zero-argument callable performing the whole transaction
        max_retries: Retries after the first attempt
        backoff: Initial delay in seconds, doubled after each retry
        description: Label used in log messages

    Raises:
        PersistenceError: When retries are exhausted
    """
    attempt = 0
    while True:
        try:
            return operation()
        except (StaleWriteError, TransientPersistenceError) as e:
            if attempt >= max_retries:
                logger.error(
                    "%s failed after %d attempts: %s", description, attempt + 1, e.message
                )
                raise PersistenceError(
                    f"{description} failed after {attempt + 1} attempts: {e.message}"
                ) from e
            delay = backoff * (2**attempt)
            attempt += 1
            logger.warning(
                "%s: %s, retry %d/%d in %.3fs",
                description,
                e.message,
                attempt,
                max_retries,
                delay,
            )
            time.sleep(delay)


__all__ = [
    "AuditEntry",
    "ExpenseRepository",
    "ProjectRepository",
    "SqlAlchemyExpenseRepository",
    "SqlAlchemyProjectRepository",
    "ExpenseLocks",
    "expense_locks",
    "run_with_retry",
]
