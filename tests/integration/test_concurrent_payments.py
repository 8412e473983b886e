"""Concurrent payments against one expense never push total_paid past amount."""

import threading
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from src.models import Base
from src.models.expense import ExpenseStatus
from src.services import build_engine
from src.services.errors import OverpaymentError, StaleWriteError
from src.services.expense_service import ExpenseService
from src.services.payment_ledger import PaymentLedger
from src.services.repository import ExpenseLocks, SqlAlchemyExpenseRepository


@pytest.fixture
def file_session_factory(tmp_path):
    """File-backed SQLite so each thread gets its own connection."""
    engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


def test_parallel_payments_respect_amount(file_session_factory):
    locks = ExpenseLocks()
    setup_session = file_session_factory()
    service = ExpenseService(SqlAlchemyExpenseRepository(setup_session), locks=locks)
    expense = service.create_expense(
        expense_type="office",
        amount="100",
        description="Cleaning service",
        created_by="clerk",
        is_office=True,
    )
    expense_id = service.approve_expense(expense.id, "admin").id
    setup_session.close()

    outcomes = []
    outcome_guard = threading.Lock()
    start = threading.Barrier(10)

    def pay():
        session = file_session_factory()
        ledger = PaymentLedger(SqlAlchemyExpenseRepository(session), locks=locks)
        start.wait()
        try:
            ledger.add_payment(expense_id, amount="20", payment_method="cash", paid_by="admin")
            result = "paid"
        except OverpaymentError:
            result = "overpayment"
        finally:
            session.close()
        with outcome_guard:
            outcomes.append(result)

    threads = [threading.Thread(target=pay) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("paid") == 5
    assert outcomes.count("overpayment") == 5

    check_session = file_session_factory()
    final = SqlAlchemyExpenseRepository(check_session).get(expense_id)
    assert final.total_paid == Decimal("100")
    assert final.status == ExpenseStatus.PAID
    assert len(final.payments) == 5
    assert sorted(p.sequence for p in final.payments) == [1, 2, 3, 4, 5]
    check_session.close()


def test_stale_session_cannot_overwrite_ledger(file_session_factory):
    """Two sessions loading the same expense: the second writer is rejected by the version check."""
    setup_session = file_session_factory()
    service = ExpenseService(SqlAlchemyExpenseRepository(setup_session), locks=ExpenseLocks())
    expense = service.create_expense(
        expense_type="office", amount="50", description="Water", created_by="c", is_office=True
    )
    expense_id = service.approve_expense(expense.id, "admin").id
    setup_session.close()

    first, second = file_session_factory(), file_session_factory()
    first_repo = SqlAlchemyExpenseRepository(first)
    second_repo = SqlAlchemyExpenseRepository(second)
    stale = second_repo.get(expense_id)
    fresh = first_repo.get(expense_id)

    fresh.total_paid = Decimal("10.00")
    first_repo.save(fresh)

    stale.total_paid = Decimal("20.00")
    with pytest.raises(StaleWriteError):
        second_repo.save(stale)

    assert first_repo.get(expense_id).total_paid == Decimal("10.00")
    first.close()
    second.close()
