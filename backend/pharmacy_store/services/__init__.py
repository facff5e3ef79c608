# Business services
from pharmacy_store.services.inventory import InventoryLedger, stock_status
from pharmacy_store.services.order_numbers import OrderNumberAllocator
from pharmacy_store.services.order_service import OrderService
