"""SQLAlchemy models."""

from vendrun.models.company import Company
from vendrun.models.location import Location, location_name_key
from vendrun.models.sku import SKU, CountPointer
from vendrun.models.machine import MachineType, Machine, Coil, CoilItem
from vendrun.models.run import (
    Run,
    RunStatus,
    TERMINAL_RUN_STATUSES,
    PickEntry,
    PickStatus,
    PickEntryExpiryOverride,
    ChocolateBox,
)
from vendrun.models.run_import import RunImport, RunImportMachine, RunImportCoilItem

__all__ = [
    "Company",
    "Location",
    "location_name_key",
    "SKU",
    "CountPointer",
    "MachineType",
    "Machine",
    "Coil",
    "CoilItem",
    "Run",
    "RunStatus",
    "TERMINAL_RUN_STATUSES",
    "PickEntry",
    "PickStatus",
    "PickEntryExpiryOverride",
    "ChocolateBox",
    "RunImport",
    "RunImportMachine",
    "RunImportCoilItem",
]
