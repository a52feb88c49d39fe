# negotiation_service/crud/__init__.py
