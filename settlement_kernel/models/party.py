"""
Module: settlement_kernel.models.party
Responsibility: ORM persistence for counterparties -- the clients who are
    invoiced and the vendors who bill.
Architecture position: Kernel > Models.  May import from db/base.py and the
    domain enumerations only.

Invariants enforced:
    - code is unique per tenant.
    - kind is CLIENT or VENDOR; INVOICE documents belong to clients and BILL
      documents to vendors (enforced by DocumentService).

Audit relevance:
    Every allocation group names exactly one counterparty, and every
    document it settles must belong to that same counterparty.
"""

from sqlalchemy import Boolean, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TrackedBase
from settlement_kernel.domain.dtos import CounterpartyInfo, CounterpartyKind


class Counterparty(TrackedBase):
    """A client or vendor the tenant transacts with."""

    __tablename__ = "counterparties"

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_counterparty_tenant_code"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    kind: Mapped[CounterpartyKind] = mapped_column(String(10), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Counterparty {self.code} ({self.kind})>"

    def to_info(self) -> CounterpartyInfo:
        return CounterpartyInfo(
            id=self.id,
            code=self.code,
            name=self.name,
            kind=CounterpartyKind(self.kind),
            is_active=self.is_active,
        )
