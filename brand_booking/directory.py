"""Brand, service, and employee directory loaded from the settings file.

Pure lookups, no network I/O. The file is read once at process start.
"""

import json
import logging
from pathlib import Path
from typing import Any, Union

from brand_booking.errors import AssociationError, NotFoundError
from brand_booking.schemas.directory_schema import Brand, DirectorySettings, Employee, Service

logger = logging.getLogger(__name__)


class Directory:
    """Keyed access to the configured brands, services, and staff roster.

    Roster order is the order employees appear in the settings file; the
    orchestrator relies on it for deterministic auto-assignment.
    """

    def __init__(self, data: DirectorySettings) -> None:
        self._brands: dict[str, Brand] = {}
        for brand in data.brands:
            if brand.id in self._brands:
                raise ValueError(f"Duplicate brand id: {brand.id}")
            self._brands[brand.id] = brand

        self._employees: dict[str, Employee] = {}
        for employee in data.employees:
            if employee.id in self._employees:
                raise ValueError(f"Duplicate employee id: {employee.id}")
            unknown = [b for b in employee.brands if b not in self._brands]
            if unknown:
                logger.warning(
                    "Employee %s references unknown brands: %s", employee.id, unknown
                )
            self._employees[employee.id] = employee

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "Directory":
        return cls(DirectorySettings.model_validate(raw))

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Directory":
        settings_path = Path(path)
        raw = json.loads(settings_path.read_text(encoding="utf-8"))
        directory = cls.from_dict(raw)
        logger.info(
            "Directory loaded from %s: %d brands, %d employees",
            settings_path, len(directory._brands), len(directory._employees),
        )
        return directory

    def get_brand(self, brand_id: str) -> Brand:
        brand = self._brands.get(brand_id)
        if brand is None:
            raise NotFoundError("brand", brand_id)
        return brand

    def get_service(self, brand_id: str, service_id: str) -> Service:
        brand = self.get_brand(brand_id)
        for service in brand.services:
            if service.id == service_id:
                return service
        raise NotFoundError("service", service_id)

    def get_employee(self, employee_id: str) -> Employee:
        employee = self._employees.get(employee_id)
        if employee is None:
            raise NotFoundError("employee", employee_id)
        return employee

    def get_employees_for_brand(self, brand_id: str) -> list[Employee]:
        """Return the brand's roster in configured order."""
        self.get_brand(brand_id)
        return [emp for emp in self._employees.values() if emp.works_for(brand_id)]

    def get_brand_employee(self, brand_id: str, employee_id: str) -> Employee:
        """Look up an employee and check they work for the brand."""
        self.get_brand(brand_id)
        employee = self.get_employee(employee_id)
        if not employee.works_for(brand_id):
            raise AssociationError(employee_id, brand_id)
        return employee

    def list_brands(self) -> list[Brand]:
        return list(self._brands.values())
