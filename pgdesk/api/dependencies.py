from typing import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from ..auth.jwt import get_owner_context
from ..config import SessionLocal
from ..services.store import OwnerContext, RowStore


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_store(
    db: Session = Depends(get_db),
    context: OwnerContext = Depends(get_owner_context),
) -> RowStore:
    return RowStore(db, context)
