"""Owner-scoped row access used by the application layer.

Rows come back as plain dicts so the pure services never touch ORM state. Related
records are resolved with ``first_or_none`` and flattened to a single dict.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.errors import PersistenceError, RowNotFoundError, ValidationError
from ..models.models import (
    AuditLog,
    Charge,
    Complaint,
    ExitClearance,
    Payment,
    Person,
    Property,
    Refund,
    Room,
    RoomTransfer,
    StaffMember,
    Tenant,
    TenantStay,
    Visitor,
    VisitorContact,
)

logger = logging.getLogger(__name__)

COLLECTIONS = {
    "audit_logs": AuditLog,
    "charges": Charge,
    "complaints": Complaint,
    "exit_clearances": ExitClearance,
    "payments": Payment,
    "people": Person,
    "properties": Property,
    "refunds": Refund,
    "rooms": Room,
    "room_transfers": RoomTransfer,
    "staff_members": StaffMember,
    "tenants": Tenant,
    "tenant_stays": TenantStay,
    "visitors": Visitor,
    "visitor_contacts": VisitorContact,
}

FILTER_OPERATORS = {
    "lt": lambda column, value: column < value,
    "lte": lambda column, value: column <= value,
    "gt": lambda column, value: column > value,
    "gte": lambda column, value: column >= value,
    "ne": lambda column, value: column != value,
    "in": lambda column, value: column.in_(list(value)),
}


@dataclass(frozen=True)
class OwnerContext:
    """The authenticated operator a request acts for."""

    owner_id: int
    actor: Optional[str] = None


def first_or_none(related: Any) -> Any:
    if isinstance(related, (list, tuple)):
        return related[0] if related else None
    return related


def row_to_dict(obj: Any) -> Dict[str, Any]:
    return {column.name: getattr(obj, column.name) for column in obj.__table__.columns}


class RowStore:
    def __init__(self, session: Session, context: OwnerContext) -> None:
        self.session = session
        self.context = context

    # --- helpers ---
    def _model(self, collection: str):
        try:
            return COLLECTIONS[collection]
        except KeyError:
            raise ValidationError(f"Unknown collection {collection}.", collection=collection)

    def _column(self, model, name: str):
        column = getattr(model, name, None)
        if column is None or name not in model.__table__.columns:
            raise ValidationError(f"Unknown field {name} on {model.__tablename__}.", field=name)
        return column

    def _scoped(self, model):
        return self.session.query(model).filter(model.owner_id == self.context.owner_id)

    def _apply_filter(self, query, model, filters: Optional[Mapping[str, Any]]):
        for key, value in (filters or {}).items():
            name, _, operator = key.partition("__")
            column = self._column(model, name)
            if operator:
                if operator not in FILTER_OPERATORS:
                    raise ValidationError(f"Unsupported filter operator {operator}.", field=key)
                query = query.filter(FILTER_OPERATORS[operator](column, value))
            elif isinstance(value, (list, tuple, set, frozenset)):
                query = query.filter(column.in_(list(value)))
            elif value is None:
                query = query.filter(column.is_(None))
            else:
                query = query.filter(column == value)
        return query

    def _apply_order(self, query, model, order: Union[str, Sequence[str], None]):
        if not order:
            return query
        names = [order] if isinstance(order, str) else list(order)
        for name in names:
            descending = name.startswith("-")
            column = self._column(model, name.lstrip("-"))
            query = query.order_by(column.desc() if descending else column.asc())
        return query

    def _serialize(self, obj: Any, relations: Iterable[str]) -> Dict[str, Any]:
        row = row_to_dict(obj)
        for relation in relations:
            related = first_or_none(getattr(obj, relation))
            row[relation] = row_to_dict(related) if related is not None else None
        return row

    def _load(self, collection: str, row_id: int):
        model = self._model(collection)
        obj = self._scoped(model).filter(model.id == row_id).first()
        if obj is None:
            raise RowNotFoundError(f"No {collection} row with id {row_id}.", collection=collection, row_id=row_id)
        return obj

    # --- reads ---
    def fetch(
        self,
        collection: str,
        filter: Optional[Mapping[str, Any]] = None,
        order: Union[str, Sequence[str], None] = None,
        limit: Optional[int] = None,
        relations: Sequence[str] = (),
    ) -> List[Dict[str, Any]]:
        model = self._model(collection)
        query = self._apply_order(self._apply_filter(self._scoped(model), model, filter), model, order)
        if limit is not None:
            query = query.limit(limit)
        return [self._serialize(obj, relations) for obj in query.all()]

    def get(self, collection: str, row_id: int, relations: Sequence[str] = ()) -> Dict[str, Any]:
        return self._serialize(self._load(collection, row_id), relations)

    def find_one(self, collection: str, filter: Mapping[str, Any], relations: Sequence[str] = ()) -> Optional[Dict[str, Any]]:
        return first_or_none(self.fetch(collection, filter=filter, limit=1, relations=relations))

    # --- writes ---
    def insert(self, collection: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        model = self._model(collection)
        payload = dict(values)
        payload["owner_id"] = self.context.owner_id
        obj = model(**payload)
        self.session.add(obj)
        self.session.flush()
        return row_to_dict(obj)

    def mutate(self, collection: str, row_id: int, patch: Mapping[str, Any]) -> Dict[str, Any]:
        obj = self._load(collection, row_id)
        model = type(obj)
        for key, value in patch.items():
            if key in ("id", "owner_id"):
                raise ValidationError(f"{key} cannot be changed.", field=key)
            self._column(model, key)
            setattr(obj, key, value)
        self.session.flush()
        return row_to_dict(obj)

    def commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("Commit failed for owner %s: %s", self.context.owner_id, exc)
            raise PersistenceError("Could not save changes.") from exc

    def rollback(self) -> None:
        self.session.rollback()
