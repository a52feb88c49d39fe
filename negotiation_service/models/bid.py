# negotiation_service/models/bid.py
# Read-only view of a supplier bid; bids are authored by the bidding service.
import uuid
from sqlalchemy import Column, String, Integer, Numeric, DateTime
from sqlalchemy.sql import func
from negotiation_service.db.base_class import Base


class Bid(Base):
    __tablename__ = "bids"

    id = Column(
        String, primary_key=True, default=lambda: f"bid_{uuid.uuid4().hex[:12]}"
    )
    rfq_id = Column(String, nullable=False, index=True)
    buyer_id = Column(String, nullable=False, index=True)  # RFQ owner
    supplier_id = Column(String, nullable=False, index=True)
    total_amount = Column(Numeric(14, 2), nullable=True)
    currency = Column(String(3), nullable=False, server_default="USD")
    delivery_days = Column(Integer, nullable=True)

    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
