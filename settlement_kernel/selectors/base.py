"""Read-side query objects share a caller-owned session and never write."""

from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from settlement_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(Generic[ModelType]):
    """Selectors return DTOs; the caller owns the transaction."""

    def __init__(self, session: Session):
        self.session = session
