"""Services for PM work order generation."""

from cmms_batch.services.generator import PMWorkOrderGenerator
from cmms_batch.services.schedules import PMScheduleRepository, PMScheduleService
from cmms_batch.services.work_orders import SqlWorkOrderGateway, WorkOrderGateway

__all__ = [
    "PMScheduleRepository",
    "PMScheduleService",
    "PMWorkOrderGenerator",
    "SqlWorkOrderGateway",
    "WorkOrderGateway",
]
