"""SQLAlchemy ORM models for loans, repayment schedules, repayments and allocations"""

import uuid
from sqlalchemy import Column, Boolean, DateTime, Date, Integer, ForeignKey, Numeric, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from microfin_gateway.domain.models import MONEY_PRECISION, MONEY_SCALE, LoanStatus, ScheduleStatus

Base = declarative_base()

# Monetary columns: exact decimals, two places
Money = Numeric(MONEY_PRECISION, MONEY_SCALE, asdecimal=True)


class Loan(Base):
    """Loan account; customer, branch and officers live in other services"""

    __tablename__ = "loan"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_number = Column(Text, nullable=False, unique=True)
    customer_id = Column(Text, nullable=False, index=True)
    branch_id = Column(Text, nullable=False, index=True)
    assigned_officer_id = Column(Text, nullable=True, index=True)
    created_by_user_id = Column(Text, nullable=False)
    principal_amount = Column(Money, nullable=False)
    status = Column(Text, nullable=False, default=LoanStatus.DRAFT.value)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    schedule_items = relationship(
        "RepaymentScheduleItem",
        back_populates="loan",
        order_by="RepaymentScheduleItem.sequence",
    )
    repayments = relationship("Repayment", back_populates="loan")


class RepaymentScheduleItem(Base):
    """Single installment owed on a loan"""

    __tablename__ = "repayment_schedule_item"
    __table_args__ = (UniqueConstraint("loan_id", "sequence", name="uq_schedule_item_loan_sequence"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loan.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    principal_due = Column(Money, nullable=False)
    interest_due = Column(Money, nullable=False, default=0)
    total_due = Column(Money, nullable=False)
    paid_amount = Column(Money, nullable=False, default=0)
    status = Column(Text, nullable=False, default=ScheduleStatus.PENDING.value)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    loan = relationship("Loan", back_populates="schedule_items")
    allocations = relationship("RepaymentAllocation", back_populates="schedule_item")


class Repayment(Base):
    """Payment received against a loan; amount is immutable"""

    __tablename__ = "repayment"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loan.id"), nullable=False, index=True)
    received_by_user_id = Column(Text, nullable=False, index=True)
    amount = Column(Money, nullable=False)
    paid_at = Column(DateTime(timezone=True), nullable=False)
    method = Column(Text, nullable=False)
    reference = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())

    loan = relationship("Loan", back_populates="repayments")
    allocations = relationship("RepaymentAllocation", back_populates="repayment")


class RepaymentAllocation(Base):
    """Portion of a repayment applied to one installment; kept after reversal as history"""

    __tablename__ = "repayment_allocation"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    repayment_id = Column(UUID(as_uuid=True), ForeignKey("repayment.id"), nullable=False, index=True)
    schedule_item_id = Column(
        UUID(as_uuid=True), ForeignKey("repayment_schedule_item.id"), nullable=False, index=True
    )
    amount = Column(Money, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    repayment = relationship("Repayment", back_populates="allocations")
    schedule_item = relationship("RepaymentScheduleItem", back_populates="allocations")
