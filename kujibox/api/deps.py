"""Dependency injection for FastAPI."""

from collections.abc import Callable, Generator

from fastapi import Header, Request
from sqlalchemy.orm import Session

from kujibox.models.rate import DEFAULT_UPDATED_BY


def get_session_factory(request: Request) -> Callable[[], Session]:
    return request.app.state.session_factory


def get_db(request: Request) -> Generator[Session, None, None]:
    """Yield a database session for request scope, committed on success."""
    with request.app.state.session_factory() as session:
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise


def get_operator(x_operator: str | None = Header(None)) -> str:
    """Operator name recorded on rate changes; authentication happens upstream."""
    return (x_operator or "").strip() or DEFAULT_UPDATED_BY
