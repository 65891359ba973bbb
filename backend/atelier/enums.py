from enum import Enum


class MachineType(str, Enum):
    CNC = "CNC"
    LASER = "LASER"
    CHAMPS = "CHAMPS"
    PANNEAUX = "PANNEAUX"
    SERVICE_MAINTENANCE = "SERVICE_MAINTENANCE"
    VENTE_MATERIAU = "VENTE_MATERIAU"
    PLIAGE = "PLIAGE"


class DevisStatus(str, Enum):
    DRAFT = "DRAFT"
    VALIDATED = "VALIDATED"
    INVOICED = "INVOICED"
    CANCELLED = "CANCELLED"


class InvoiceStatus(str, Enum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    EMPLOYEE = "EMPLOYEE"


class ExpenseCategory(str, Enum):
    MATERIAL = "MATERIAL"
    EQUIPMENT = "EQUIPMENT"
    UTILITIES = "UTILITIES"
    SALARY = "SALARY"
    RENT = "RENT"
    OTHER = "OTHER"


class CaisseScope(str, Enum):
    ADMIN_LEVEL = "ADMIN_LEVEL"        # toute la caisse
    EMPLOYEE_LEVEL = "EMPLOYEE_LEVEL"  # encaissements/dépenses saisis par les employés
