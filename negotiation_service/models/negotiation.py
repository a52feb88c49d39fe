# negotiation_service/models/negotiation.py
import uuid
from sqlalchemy import Column, String, DateTime, ForeignKey, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from negotiation_service.db.base_class import Base


class Negotiation(Base):
    __tablename__ = "negotiations"

    id = Column(
        String, primary_key=True, default=lambda: f"neg_{uuid.uuid4().hex[:12]}"
    )
    # One negotiation per bid; the unique constraint makes start() idempotent
    bid_id = Column(
        String,
        ForeignKey("bids.id"),
        nullable=False,
        unique=True,
        index=True,
    )
    rfq_id = Column(String, nullable=False, index=True)
    buyer_id = Column(String, nullable=False, index=True)
    supplier_id = Column(String, nullable=False, index=True)
    initiator_id = Column(String, nullable=False)

    status = Column(String, nullable=False, server_default=text("'open'"))  # open | closed | cancelled
    closed_reason = Column(String, nullable=True)  # accepted | rejected
    purchase_order_id = Column(String, nullable=True)

    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    closed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    bid = relationship("Bid")
    messages = relationship(
        "NegotiationMessage",
        back_populates="negotiation",
        order_by="NegotiationMessage.sequence",
    )

    @property
    def participants(self) -> tuple:
        return (self.buyer_id, self.supplier_id)

    def __repr__(self):
        return f"<Negotiation {self.id}: {self.status}>"
