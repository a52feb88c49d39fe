# negotiation_service/models/__init__.py

from .bid import Bid
from .negotiation import Negotiation
from .negotiation_message import NegotiationMessage
from .purchase_order import PurchaseOrder
