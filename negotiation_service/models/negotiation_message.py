# negotiation_service/models/negotiation_message.py
import uuid
from sqlalchemy import (
    Column, String, Integer, Text, DateTime, ForeignKey, JSON, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from negotiation_service.db.base_class import Base


class NegotiationMessage(Base):
    __tablename__ = "negotiation_messages"
    __table_args__ = (
        UniqueConstraint("negotiation_id", "sequence", name="uq_negotiation_message_sequence"),
    )

    id = Column(
        String, primary_key=True, default=lambda: f"ngm_{uuid.uuid4().hex[:12]}"
    )
    negotiation_id = Column(
        String,
        ForeignKey("negotiations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Position in the append-only log, assigned by the store
    sequence = Column(Integer, nullable=False)
    sender_id = Column(String, nullable=False)
    message_type = Column(String, nullable=False)  # text | counter_offer | acceptance | rejection
    message = Column(Text, nullable=False)
    offer_data = Column(JSON, nullable=True)
    offer_status = Column(String, nullable=True)  # pending | accepted | rejected | cancelled
    resolved_by_id = Column(String, nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    in_reply_to_id = Column(String, nullable=True)
    attachments = Column(JSON, nullable=True)

    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    # Relationships
    negotiation = relationship("Negotiation", back_populates="messages")

    def __repr__(self):
        return f"<NegotiationMessage {self.id} #{self.sequence}: {self.message_type}>"
