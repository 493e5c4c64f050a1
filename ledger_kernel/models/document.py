"""
Module: ledger_kernel.models.document
Responsibility: Source documents (AP bills, AR invoices) with their lines
    and per-line lot allocations, as far as the posting core needs them.
Architecture position: Kernel > Models.

Invariants enforced:
    - status / edit_request_status only change through
      DocumentLifecycleService, which consults the pure workflow in
      ledger_kernel.domain.document_workflow.
    - Line allocations on a bill describe lots to receive (lot_code plus
      dates); on an invoice they point at existing lots (lot_id).

Audit relevance:
    approved_* / cancelled_* columns record the actor and time of the two
    transitions that move the ledger.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.domain.document_workflow import DocumentStatus, EditRequestStatus
from ledger_kernel.domain.values import ZERO, EntityType


class DocumentType(str, Enum):
    AP_BILL = "AP_BILL"
    AR_INVOICE = "AR_INVOICE"

    @property
    def entity_type(self) -> EntityType:
        return EntityType.SUPPLIER if self is DocumentType.AP_BILL else EntityType.CUSTOMER


class SourceDocument(TrackedBase):
    """
    A bill or invoice header.

    Guarantees:
        - (doc_type, doc_number) is unique.
        - entity_id is the supplier (bills) or customer (invoices).
    """

    __tablename__ = "source_documents"

    __table_args__ = (
        UniqueConstraint("doc_type", "doc_number", name="uq_document_number"),
        Index("idx_document_status", "doc_type", "status"),
        Index("idx_document_entity", "entity_id"),
    )

    doc_type: Mapped[DocumentType] = mapped_column(String(20), nullable=False)

    doc_number: Mapped[str] = mapped_column(String(50), nullable=False)

    doc_date: Mapped[date] = mapped_column(Date, nullable=False)

    company_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)

    warehouse_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    currency_code: Mapped[str | None] = mapped_column(String(3), nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)

    discount_total: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)

    tax_total: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)

    total: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)

    is_reverse_charge: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    memo: Mapped[str | None] = mapped_column(String(500), nullable=True)

    status: Mapped[DocumentStatus] = mapped_column(
        String(30),
        default=DocumentStatus.DRAFT,
        nullable=False,
    )

    edit_request_status: Mapped[EditRequestStatus] = mapped_column(
        String(20),
        default=EditRequestStatus.NONE,
        nullable=False,
    )

    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    cancelled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    lines: Mapped[list["DocumentLine"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="DocumentLine.line_no",
    )

    def __repr__(self) -> str:
        return f"<SourceDocument {self.doc_type} {self.doc_number} status={self.status}>"

    @property
    def entity_type(self) -> EntityType:
        return DocumentType(self.doc_type).entity_type


class DocumentLine(TrackedBase):
    """
    One line of a document.

    ``account_id`` overrides the product's configured revenue/expense
    account; lines without a product must set it.
    """

    __tablename__ = "document_lines"

    __table_args__ = (
        UniqueConstraint("document_id", "line_no", name="uq_document_line_no"),
    )

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("source_documents.id"),
        nullable=False,
    )

    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    product_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    account_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=True,
    )

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    quantity: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)

    rate: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)

    line_total: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)

    is_service: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    uom_code: Mapped[str | None] = mapped_column(String(20), nullable=True)

    document: Mapped[SourceDocument] = relationship(back_populates="lines")

    allocations: Mapped[list["LineAllocation"]] = relationship(
        back_populates="line",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def is_inventory_bearing(self) -> bool:
        return self.product_id is not None and not self.is_service


class LineAllocation(TrackedBase):
    """
    Pre-selected lot split for a document line.

    Bills name the lot to receive by lot_code (created on approval);
    invoices name an existing lot by lot_id.  unit_cost on an invoice
    allocation is overwritten with the cost actually withdrawn.
    """

    __tablename__ = "document_line_allocations"

    __table_args__ = (
        Index("idx_allocation_line", "line_id"),
    )

    line_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("document_lines.id"),
        nullable=False,
    )

    lot_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("inventory_lots.id"),
        nullable=True,
    )

    lot_code: Mapped[str | None] = mapped_column(String(100), nullable=True)

    mfg_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    exp_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    line: Mapped[DocumentLine] = relationship(back_populates="allocations")
