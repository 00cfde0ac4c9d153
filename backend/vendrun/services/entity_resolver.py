"""Entity Resolver: match import rows to canonical records by natural key.

Every record is located by its code (or a location's normalised name), never
by an id carried in the sheet. Missing records are created through
``find_or_create`` so that concurrent imports of the same sheet converge on
one row per natural key. Descriptive fields on existing records are refreshed
from the row, but a blank imported value never erases a value already held.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from vendrun.core.errors import InvalidOverride, MalformedImportRow
from vendrun.db.store import find_or_create
from vendrun.models.location import Location, location_name_key
from vendrun.models.machine import Coil, CoilItem, Machine, MachineType
from vendrun.models.sku import SKU
from vendrun.schemas.run_import import CountSnapshot, ImportRow, ResolvedEntity

logger = logging.getLogger(__name__)

REQUIRED_CODES = ("machine_code", "coil_code", "sku_code")


def clean(value: Optional[str]) -> Optional[str]:
    """Trim a raw cell; blank cells become None."""
    if value is None:
        return None
    value = value.strip()
    return value or None


def missing_codes(row: ImportRow) -> List[str]:
    return [field for field in REQUIRED_CODES if clean(getattr(row, field)) is None]


class EntityResolver:
    """Resolves import rows into Location/Machine/Coil/CoilItem/SKU rows."""

    def __init__(self, db: Session, company_id: int):
        self.db = db
        self.company_id = company_id

    def resolve(self, row: ImportRow, row_index: int = 0) -> ResolvedEntity:
        """Resolve one row, creating whatever does not exist yet.

        Raises MalformedImportRow when the machine, coil or SKU code is
        missing, and InvalidOverride for a negative manual override. Nothing
        is written for a rejected row.
        """
        missing = missing_codes(row)
        if missing:
            raise MalformedImportRow(row_index, missing)
        if row.manual_override is not None and row.manual_override < 0:
            raise InvalidOverride(
                f"Import row {row_index} has a negative manual override",
                row.manual_override,
            )

        created_any = False

        location = None
        if clean(row.location_name):
            location, created = self._resolve_location(row)
            created_any |= created

        machine_type = None
        if clean(row.machine_type):
            machine_type, _ = self._resolve_machine_type(clean(row.machine_type))

        machine, created = self._resolve_machine(row, machine_type, location)
        created_any |= created

        sku, created = self._resolve_sku(row)
        created_any |= created

        coil, created = find_or_create(
            self.db,
            lambda: self.db.query(Coil).filter(
                Coil.machine_id == machine.id, Coil.code == clean(row.coil_code)
            ).first(),
            lambda: Coil(machine_id=machine.id, code=clean(row.coil_code)),
        )
        created_any |= created

        coil_item, created = find_or_create(
            self.db,
            lambda: self.db.query(CoilItem).filter(
                CoilItem.coil_id == coil.id, CoilItem.sku_id == sku.id
            ).first(),
            lambda: CoilItem(coil_id=coil.id, sku_id=sku.id, par=max(row.par or 0, 0)),
        )
        created_any |= created
        if not created and row.par is not None and row.par >= 0 and coil_item.par != row.par:
            coil_item.par = row.par

        self.db.flush()

        return ResolvedEntity(
            row_index=row_index,
            location_id=location.id if location else machine.location_id,
            machine_id=machine.id,
            coil_id=coil.id,
            coil_item_id=coil_item.id,
            sku_id=sku.id,
            was_created=created_any,
            snapshot=CountSnapshot(
                current=row.current,
                par=row.par,
                need=row.need,
                forecast=row.forecast,
                total=row.total,
            ),
            manual_override=row.manual_override,
            notes=clean(row.notes),
        )

    def _resolve_location(self, row: ImportRow) -> Tuple[Location, bool]:
        name = clean(row.location_name)
        key = location_name_key(name)
        location, created = find_or_create(
            self.db,
            lambda: self.db.query(Location).filter(
                Location.company_id == self.company_id, Location.name_key == key
            ).first(),
            lambda: Location(
                company_id=self.company_id,
                name=name,
                name_key=key,
                address=clean(row.location_address),
            ),
        )
        if not created and clean(row.location_address):
            location.address = clean(row.location_address)
        return location, created

    def _resolve_machine_type(self, name: str) -> Tuple[MachineType, bool]:
        return find_or_create(
            self.db,
            lambda: self.db.query(MachineType).filter(MachineType.name == name).first(),
            lambda: MachineType(name=name),
        )

    def _resolve_machine(
        self,
        row: ImportRow,
        machine_type: Optional[MachineType],
        location: Optional[Location],
    ) -> Tuple[Machine, bool]:
        code = clean(row.machine_code)
        machine, created = find_or_create(
            self.db,
            lambda: self.db.query(Machine).filter(
                Machine.company_id == self.company_id, Machine.code == code
            ).first(),
            lambda: Machine(
                company_id=self.company_id,
                code=code,
                description=clean(row.machine_description),
                machine_type_id=machine_type.id if machine_type else None,
                location_id=location.id if location else None,
            ),
        )
        if not created:
            if clean(row.machine_description):
                machine.description = clean(row.machine_description)
            if machine_type is not None:
                machine.machine_type_id = machine_type.id
            if location is not None:
                machine.location_id = location.id
        return machine, created

    def _resolve_sku(self, row: ImportRow) -> Tuple[SKU, bool]:
        code = clean(row.sku_code)
        sku, created = find_or_create(
            self.db,
            lambda: self.db.query(SKU).filter(SKU.code == code).first(),
            lambda: SKU(
                code=code,
                name=clean(row.sku_name) or code,
                type=clean(row.sku_type),
                category=clean(row.sku_category),
            ),
        )
        if not created:
            # Blank cells never erase enrichment already on the SKU
            if clean(row.sku_name):
                sku.name = clean(row.sku_name)
            if clean(row.sku_type):
                sku.type = clean(row.sku_type)
            if clean(row.sku_category):
                sku.category = clean(row.sku_category)
        return sku, created
