"""
cmms_batch.models -- ORM models for PM schedules and work orders.

Architecture: cmms_batch/models. Imports from cmms_kernel.db only.
"""

from cmms_batch.models.schedule import PMScheduleModel
from cmms_batch.models.work_order import WorkOrderModel

__all__ = [
    "PMScheduleModel",
    "WorkOrderModel",
]
