from sqlmodel import Session, select

from obrastock.error import NotFound
from obrastock.models import Loan, Tool, User


def get_tool(session: Session, tool_id: int) -> Tool:
    tool = session.get(Tool, tool_id)
    if not tool:
        raise NotFound("工具不存在", code="TOOL_NOT_FOUND")
    return tool


def get_loan(session: Session, loan_id: int) -> Loan:
    loan = session.get(Loan, loan_id)
    if not loan:
        raise NotFound("借用记录不存在", code="LOAN_NOT_FOUND")
    return loan


def get_user(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if not user:
        raise NotFound("用户不存在", code="USER_NOT_FOUND")
    return user


def lock_tool(session: Session, tool_id: int) -> Tool:
    """重新读一遍工具行并加行锁（SQLite 会忽略 FOR UPDATE）。"""
    stmt = (
        select(Tool)
        .where(Tool.id == tool_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    tool = session.exec(stmt).first()
    if not tool:
        raise NotFound("工具不存在", code="TOOL_NOT_FOUND")
    return tool


# 唯一字段走索引列查询
def find_tool_by_code(session: Session, code: str) -> Tool | None:
    return session.exec(select(Tool).where(Tool.code == code)).first()


def find_user_by_username(session: Session, username: str) -> User | None:
    return session.exec(select(User).where(User.username == username)).first()


def find_user_by_email(session: Session, email: str) -> User | None:
    return session.exec(select(User).where(User.email == email)).first()
