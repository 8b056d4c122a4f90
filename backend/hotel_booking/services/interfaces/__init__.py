"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .inventory import GatewayOutcome, InventoryGateway, OutcomeKind
from .local_inventory import LocalInventoryGateway

__all__ = ['GatewayOutcome', 'InventoryGateway', 'OutcomeKind', 'LocalInventoryGateway']
