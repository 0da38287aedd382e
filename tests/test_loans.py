import threading
from datetime import datetime, timedelta

import pytest
from sqlmodel import SQLModel, Session, create_engine, select

from obrastock.error import BadRequest, InsufficientStock, InvalidState, NotFound
from obrastock.models import InventoryMovement, Loan, Tool
from obrastock.schemas import LoanCreate
from obrastock.services.loans import create_loan, days_overdue, is_overdue, return_loan

NOW = datetime(2026, 3, 10, 12, 0, 0)


def _loan_data(tool_id: int, quantity: int = 1, due_in_days: int = 7, **kw) -> LoanCreate:
    return LoanCreate(
        tool_id=tool_id,
        borrower_name=kw.pop("borrower_name", "Maria"),
        quantity=quantity,
        expected_return_date=NOW + timedelta(days=due_in_days),
        **kw,
    )


def _movements(session, tool_id):
    stmt = select(InventoryMovement).where(InventoryMovement.tool_id == tool_id).order_by(InventoryMovement.id)
    return session.exec(stmt).all()


def test_create_loan_decrements_available_and_records_movement(session, make_tool):
    tool = make_tool("DRL-1", total=5)

    loan = create_loan(session, _loan_data(tool.id, quantity=3), now=NOW)

    assert loan.status == "active"
    assert loan.actual_return_date is None
    assert loan.loan_date == NOW
    assert session.get(Tool, tool.id).available_quantity == 2

    mvs = _movements(session, tool.id)
    assert len(mvs) == 1
    assert mvs[0].type == "loan"
    assert mvs[0].quantity == -3
    assert mvs[0].loan_id == loan.id


def test_second_loan_beyond_available_is_rejected(session, make_tool):
    tool = make_tool("DRL-2", total=5)
    create_loan(session, _loan_data(tool.id, quantity=3), now=NOW)

    with pytest.raises(InsufficientStock):
        create_loan(session, _loan_data(tool.id, quantity=3), now=NOW)

    assert session.get(Tool, tool.id).available_quantity == 2
    assert len(session.exec(select(Loan)).all()) == 1
    assert len(_movements(session, tool.id)) == 1


def test_loan_for_unknown_tool(session):
    with pytest.raises(NotFound):
        create_loan(session, _loan_data(999), now=NOW)


def test_return_restores_exact_quantity(session, make_tool):
    tool = make_tool("SAW-1", total=4)
    loan = create_loan(session, _loan_data(tool.id, quantity=2), now=NOW)
    assert session.get(Tool, tool.id).available_quantity == 2

    returned = return_loan(session, loan.id, now=NOW + timedelta(days=1))

    assert returned.status == "returned"
    assert returned.actual_return_date == NOW + timedelta(days=1)
    assert session.get(Tool, tool.id).available_quantity == 4

    mvs = _movements(session, tool.id)
    assert [(m.type, m.quantity) for m in mvs] == [("loan", -2), ("return", 2)]
    assert mvs[1].loan_id == loan.id


def test_double_return_is_rejected_without_side_effects(session, make_tool):
    tool = make_tool("SAW-2", total=4)
    loan = create_loan(session, _loan_data(tool.id, quantity=2), now=NOW)
    return_loan(session, loan.id, now=NOW)

    with pytest.raises(InvalidState) as exc:
        return_loan(session, loan.id, now=NOW)

    assert exc.value.code == "LOAN_ALREADY_RETURNED"
    assert session.get(Tool, tool.id).available_quantity == 4
    assert len(_movements(session, tool.id)) == 2


def test_return_unknown_loan(session):
    with pytest.raises(NotFound):
        return_loan(session, 12345)


def test_overdue_detection(session, make_tool):
    tool = make_tool("LVL-1", total=2)
    loan = create_loan(session, _loan_data(tool.id, due_in_days=-1), now=NOW)

    assert is_overdue(loan, NOW) is True
    assert days_overdue(loan, NOW) >= 1

    # 还没到期
    assert is_overdue(loan, NOW - timedelta(days=2)) is False
    assert days_overdue(loan, NOW - timedelta(days=2)) == 0

    return_loan(session, loan.id, now=NOW + timedelta(days=5))
    assert is_overdue(loan, NOW + timedelta(days=30)) is False
    assert days_overdue(loan, NOW + timedelta(days=30)) == 0


def test_days_overdue_floors_partial_days():
    loan = Loan(
        tool_id=1,
        borrower_name="x",
        quantity=1,
        expected_return_date=NOW,
        status="active",
    )
    assert days_overdue(loan, NOW + timedelta(hours=47)) == 1
    assert days_overdue(loan, NOW + timedelta(days=3, minutes=1)) == 3
    # 刚好到期那一刻不算逾期
    assert is_overdue(loan, NOW) is False


def test_retired_tool_cannot_be_lent(session, make_tool):
    from obrastock.services.inventory import retire_tool

    tool = make_tool("OLD-1", total=3)
    retire_tool(session, tool.id)

    with pytest.raises(InvalidState):
        create_loan(session, _loan_data(tool.id), now=NOW)


def test_available_stays_within_bounds_over_a_sequence(session, make_tool):
    tool = make_tool("MIX-1", total=3)
    loans = []
    for _ in range(3):
        loans.append(create_loan(session, _loan_data(tool.id), now=NOW))
    with pytest.raises(InsufficientStock):
        create_loan(session, _loan_data(tool.id), now=NOW)
    for loan in loans:
        return_loan(session, loan.id, now=NOW)
        t = session.get(Tool, tool.id)
        assert 0 <= t.available_quantity <= t.total_quantity
    assert session.get(Tool, tool.id).available_quantity == 3


def test_loan_create_rejects_due_date_before_loan_date():
    from pydantic import ValidationError

    with pytest.raises(ValidationError):
        LoanCreate(
            tool_id=1,
            borrower_name="x",
            loan_date=NOW,
            expected_return_date=NOW - timedelta(days=1),
        )

    with pytest.raises(ValidationError):
        LoanCreate(tool_id=1, borrower_name="x", quantity=0, expected_return_date=NOW)


def test_zero_quantity_is_a_bad_request(session, make_tool):
    tool = make_tool("ZERO-1", total=3)
    # 绕过 pydantic 校验，直接调服务层
    data = LoanCreate.model_construct(
        tool_id=tool.id,
        borrower_name="x",
        borrower_team=None,
        borrower_contact=None,
        quantity=0,
        loan_date=None,
        expected_return_date=NOW + timedelta(days=1),
        notes=None,
    )

    with pytest.raises(BadRequest) as exc:
        create_loan(session, data, now=NOW)

    assert exc.value.code == "INVALID_QUANTITY"
    assert exc.value.status_code == 400
    assert session.get(Tool, tool.id).available_quantity == 3
    assert _movements(session, tool.id) == []


def test_unknown_tool_ids_do_not_grow_lock_table(session):
    from obrastock.services import loans as loans_mod
    from obrastock.services.inventory import adjust_stock, retire_tool
    from obrastock.schemas import StockAction

    before = len(loans_mod._tool_locks)
    for tool_id in range(10_000, 10_050):
        with pytest.raises(NotFound):
            create_loan(session, _loan_data(tool_id), now=NOW)
        with pytest.raises(NotFound):
            adjust_stock(session, tool_id, StockAction.entry, 1)
        with pytest.raises(NotFound):
            retire_tool(session, tool_id)

    assert len(loans_mod._tool_locks) == before


def test_concurrent_loans_never_oversell(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'concurrent.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as s:
        tool = Tool(name="Betoneira", code="CONC-1", category="power", total_quantity=3, available_quantity=3)
        s.add(tool)
        s.commit()
        tool_id = tool.id

    workers = 8
    barrier = threading.Barrier(workers)
    results = []
    results_guard = threading.Lock()

    def borrow(n):
        with Session(engine) as s:
            barrier.wait()
            try:
                create_loan(s, _loan_data(tool_id, borrower_name=f"w{n}"), now=NOW)
                outcome = "ok"
            except InsufficientStock:
                outcome = "short"
        with results_guard:
            results.append(outcome)

    threads = [threading.Thread(target=borrow, args=(i,)) for i in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    try:
        # 线程里出现其他异常时 results 会少条目
        assert len(results) == workers
        assert results.count("ok") == 3
        assert results.count("short") == workers - 3

        with Session(engine) as s:
            assert s.get(Tool, tool_id).available_quantity == 0
            assert len(s.exec(select(Loan).where(Loan.tool_id == tool_id)).all()) == 3
            mvs = s.exec(select(InventoryMovement).where(InventoryMovement.tool_id == tool_id)).all()
            assert [m.type for m in mvs] == ["loan"] * 3
    finally:
        engine.dispose()
