"""
Module directory.

Read-only lookup of the business modules the hub federates into. The
directory is seeded in-process; lookups go through the storage backend and
inherit its timeout.
"""

import uuid
from typing import List, Optional

from loguru import logger

from .models import Module
from .permissions import DEFAULT_MODULES
from .repository import ModuleRepository


# name -> (display name, description)
DEFAULT_MODULE_DETAILS = {
    "inventario": ("Inventário", "Manage equipment inventory, tracking, and availability status"),
    "compras": ("Compras", "Purchase orders, supplier management, and procurement"),
    "estoque": ("Estoque", "Stock levels, warehouse management, and logistics"),
    "almoxarifado": ("Almoxarifado", "Store management, item requests, and distribution"),
    "comercial": ("Comercial", "Sales, customer relations, and contract management"),
    "financeiro": ("Financeiro", "Financial management, accounting, and reporting"),
    "expedicao": ("Expedição", "Shipping, delivery scheduling, and logistics coordination"),
    "manutencao": ("Manutenção", "Equipment maintenance, service scheduling, and repairs"),
    "bi": ("Business Intelligence", "Analytics, reports, and business intelligence dashboards"),
}


class ModuleDirectory:
    """Lookup of module metadata (name, URL, active flag)."""

    def __init__(self, store: ModuleRepository):
        self.store = store

    def get_module(self, module_id: str) -> Optional[Module]:
        return self.store.get_module(module_id)

    def get_module_by_name(self, name: str) -> Optional[Module]:
        return self.store.get_module_by_name(name)

    def list_modules(self) -> List[Module]:
        return self.store.list_modules()

    def list_active_modules(self) -> List[Module]:
        return [m for m in self.store.list_modules() if m.is_active]

    def register(
        self,
        name: str,
        url: str,
        display_name: Optional[str] = None,
        description: str = "",
        category: str = "business",
        is_active: bool = True,
    ) -> Module:
        module = Module(
            id=str(uuid.uuid4()),
            name=name,
            display_name=display_name or name,
            url=url,
            description=description,
            category=category,
            is_active=is_active,
        )
        self.store.add_module(module)
        logger.info(f"Module registered: {name} -> {url}")
        return module

    def seed_defaults(self, host: str = "localhost", first_port: int = 3001) -> List[Module]:
        """Register the default modules that are not yet known, one port each."""
        modules = []
        for offset, name in enumerate(DEFAULT_MODULES):
            module = self.store.get_module_by_name(name)
            if module is None:
                display_name, description = DEFAULT_MODULE_DETAILS[name]
                module = self.register(
                    name,
                    f"http://{host}:{first_port + offset}",
                    display_name=display_name,
                    description=description,
                )
            modules.append(module)
        return modules
