# negotiation_service/api/v1/endpoints/purchase_orders.py
import logging
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from negotiation_service.api import deps
from negotiation_service.core.kafka_producer import emit_negotiation_event, get_kafka_producer
from negotiation_service.crud import crud_negotiation
from negotiation_service.db.session import get_db
from negotiation_service.schemas.purchase_order import (
    PurchaseOrderFromNegotiation,
    PurchaseOrderRead,
)
from negotiation_service.schemas.token import TokenPayload
from negotiation_service.services import purchase_order_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/purchase-orders", tags=["Purchase Orders"])


@router.post("/from-negotiation/{negotiationId}", status_code=status.HTTP_201_CREATED)
def create_from_negotiation(
    negotiationId: str,
    po_in: PurchaseOrderFromNegotiation,
    response: Response,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
    producer=Depends(get_kafka_producer),
):
    """
    Create the purchase order for an accepted negotiation.
    A repeated call is not an error: it returns the existing order.
    """
    purchase_order, created = purchase_order_service.create_from_negotiation(
        db,
        negotiation_id=negotiationId,
        actor_id=current_user.sub,
        details=po_in,
    )

    if created:
        negotiation = crud_negotiation.get(db, negotiationId)
        emit_negotiation_event(
            producer, "purchase_order.created", negotiation,
            metadata={"po_number": purchase_order.po_number},
        )
        message = "Purchase order created successfully"
    else:
        response.status_code = status.HTTP_200_OK
        message = "Purchase order already exists for this negotiation"

    return {
        "success": True,
        "data": PurchaseOrderRead.model_validate(purchase_order).model_dump(mode="json"),
        "message": message,
    }
