from equipment_portal.services.logging import logging_service

__all__ = [
    "logging_service",
]
