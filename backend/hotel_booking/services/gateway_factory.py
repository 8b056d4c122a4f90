"""
Inventory gateway factory.
Configures how the booking saga reaches the inventory authority.
"""

from typing import Optional

from hotel_booking.core.config import get_settings
from hotel_booking.db.session import AsyncSessionLocal
from hotel_booking.services.interfaces.inventory import InventoryGateway
from hotel_booking.services.interfaces.local_inventory import LocalInventoryGateway
from hotel_booking.services.inventory_gateway import HttpInventoryGateway

settings = get_settings()


def build_inventory_gateway() -> InventoryGateway:
    """
    Build the configured gateway.

    - http: the inventory authority is a separate service (default)
    - local: same process, same database
    """
    if settings.INVENTORY_GATEWAY == "local":
        return LocalInventoryGateway(AsyncSessionLocal)
    return HttpInventoryGateway(settings.INVENTORY_SERVICE_URL)


# Singleton instance
_gateway: Optional[InventoryGateway] = None


def get_inventory_gateway() -> InventoryGateway:
    """FastAPI dependency: the process-wide gateway."""
    global _gateway
    if _gateway is None:
        _gateway = build_inventory_gateway()
    return _gateway


async def close_inventory_gateway() -> None:
    """Close the gateway's connections on shutdown."""
    global _gateway
    if _gateway is not None:
        await _gateway.close()
        _gateway = None
