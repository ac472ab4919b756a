from .inventory_service import InventoryService
from .back_order_service import BackOrderService
from .work_order_service import WorkOrderService
from .supplier_client import SupplierClient, HttpSupplierClient, DisabledSupplierClient, build_supplier_client
from .status_sync import sync_work_order_status

__all__ = [
    'InventoryService',
    'BackOrderService',
    'WorkOrderService',
    'SupplierClient',
    'HttpSupplierClient',
    'DisabledSupplierClient',
    'build_supplier_client',
    'sync_work_order_status'
]
