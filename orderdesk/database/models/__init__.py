"""
ORM models.

Importing this package registers every table on ``Base.metadata``.
"""

from orderdesk.database.models.audit import AuditLog
from orderdesk.database.models.invoice import (
    Invoice,
    InvoicePayment,
    InvoiceStatus,
    InvoiceType,
    PaymentMethod,
)
from orderdesk.database.models.order import (
    AddOnStatus,
    DepositStatus,
    OrderAddOn,
    SalesOrder,
    SalesOrderLine,
    SellMode,
)
from orderdesk.database.models.production import (
    BatchStatus,
    ProductionBatch,
    ProductionBatchItem,
    StepStatus,
    WorkflowStep,
    WorkflowStepType,
)
from orderdesk.database.models.setting import Setting
from orderdesk.database.models.sku import Sku

__all__ = [
    "AddOnStatus",
    "AuditLog",
    "BatchStatus",
    "DepositStatus",
    "Invoice",
    "InvoicePayment",
    "InvoiceStatus",
    "InvoiceType",
    "OrderAddOn",
    "PaymentMethod",
    "ProductionBatch",
    "ProductionBatchItem",
    "SalesOrder",
    "SalesOrderLine",
    "SellMode",
    "Setting",
    "Sku",
    "StepStatus",
    "WorkflowStep",
    "WorkflowStepType",
]
