from datetime import datetime
from typing import Optional, List, Dict

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from atelier.enums import CaisseScope, DevisStatus, ExpenseCategory, InvoiceStatus, MachineType


# ---- Clients ----
class ClientBase(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    address: Optional[str] = None
    notes: Optional[str] = None

class ClientCreate(ClientBase):
    pass

class ClientUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    address: Optional[str] = None
    notes: Optional[str] = None

class ClientOut(ClientBase):
    model_config = ConfigDict(from_attributes=True)
    id: int
    email: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# ---- Catalogue ----
class MachinePricingOut(BaseModel):
    id: int
    machine_type: MachineType
    price_cents: int
    description: Optional[str] = None
    updated_at: datetime

class MachinePricingUpdate(BaseModel):
    price_cents: int
    description: Optional[str] = None

class MaterialCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    price_per_unit_cents: int
    unit: str = Field(min_length=1, max_length=20)
    description: Optional[str] = None
    is_active: bool = True

class MaterialUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    price_per_unit_cents: Optional[int] = None
    unit: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None

class MaterialOut(MaterialCreate):
    id: int
    created_at: datetime
    updated_at: datetime

class ServiceCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    price_cents: int
    description: Optional[str] = None
    is_active: bool = True

class ServiceUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    price_cents: Optional[int] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None

class ServiceOut(ServiceCreate):
    id: int
    created_at: datetime
    updated_at: datetime


# ---- Paiements ----
class PaymentCreate(BaseModel):
    amount_cents: int
    payment_date: Optional[datetime] = None
    payment_method: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None

class PaymentOut(BaseModel):
    id: int
    invoice_id: Optional[int] = None
    devis_id: Optional[int] = None
    amount_cents: int
    payment_date: datetime
    payment_method: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    created_by_id: int
    created_at: datetime

class PaymentStats(BaseModel):
    invoice_id: int
    total_cents: int
    paid_cents: int
    remaining_cents: int
    percent_paid: float
    is_paid: bool
    status: InvoiceStatus


# ---- Devis ----
class LineCreate(BaseModel):
    """Saisie brute; les champs requis dépendent de machine_type."""
    machine_type: MachineType
    description: Optional[str] = None
    minutes: Optional[float] = None
    meters: Optional[float] = None
    material_meters: Optional[float] = None
    quantity: Optional[float] = None
    unit_price_cents: Optional[int] = None
    width: Optional[float] = None
    height: Optional[float] = None
    dimension_unit: Optional[str] = None
    material_id: Optional[int] = None
    service_id: Optional[int] = None

class LinePriceOut(BaseModel):
    unit_price_cents: int
    material_cost_cents: int
    line_total_cents: int

class DevisCreate(BaseModel):
    client_id: int
    notes: Optional[str] = None

class DevisServiceAdd(BaseModel):
    service_id: int

class DevisLineOut(BaseModel):
    id: int
    machine_type: MachineType
    description: Optional[str] = None
    minutes: Optional[float] = None
    meters: Optional[float] = None
    material_meters: Optional[float] = None
    quantity: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None
    dimension_unit: Optional[str] = None
    material_id: Optional[int] = None
    material_name: Optional[str] = None
    service_id: Optional[int] = None
    unit_price_cents: int
    material_cost_cents: int
    line_total_cents: int

class DevisServiceOut(BaseModel):
    id: int
    service_id: int
    name: str
    price_cents: int

class DevisSummary(BaseModel):
    id: int
    reference: str
    status: DevisStatus
    total_cents: int
    notes: Optional[str] = None
    client_id: int
    client_name: Optional[str] = None
    created_by_id: int
    invoice_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    validated_at: Optional[datetime] = None

class DevisOut(DevisSummary):
    lines: List[DevisLineOut] = []
    services: List[DevisServiceOut] = []
    payments: List[PaymentOut] = []
    paid_cents: int
    remaining_cents: int


# ---- Factures ----
class InvoiceFromDevis(BaseModel):
    devis_ids: List[int]

class InvoiceItemCreate(BaseModel):
    description: str
    quantity: float
    unit_price_cents: int

class InvoiceDirectCreate(BaseModel):
    client_id: int
    items: List[InvoiceItemCreate]

class InvoiceItemOut(InvoiceItemCreate):
    id: int
    total_cents: int

class InvoiceDevisRef(BaseModel):
    id: int
    reference: str
    total_cents: int
    status: DevisStatus

class InvoiceSummary(BaseModel):
    id: int
    reference: str
    total_cents: int
    currency: str
    client_id: int
    client_name: Optional[str] = None
    created_by_id: int
    created_at: datetime
    paid_cents: int
    remaining_cents: int
    status: InvoiceStatus

class InvoiceOut(InvoiceSummary):
    items: List[InvoiceItemOut] = []
    devis: List[InvoiceDevisRef] = []


# ---- Solde client ----
class BalanceDevis(BaseModel):
    id: int
    reference: str
    status: DevisStatus
    total_cents: int
    invoice_id: Optional[int] = None
    invoice_reference: Optional[str] = None
    created_at: datetime
    paid_cents: int
    remaining_cents: int
    is_fully_paid: bool

class ClientBalance(BaseModel):
    client_id: int
    client_name: str
    total_devis_cents: int
    total_paid_cents: int
    outstanding_cents: int
    fully_paid_count: int
    pending_count: int
    devis: List[BalanceDevis] = []


# ---- Dépenses ----
class ExpenseCreate(BaseModel):
    description: str = Field(min_length=1, max_length=300)
    amount_cents: int
    category: ExpenseCategory = ExpenseCategory.OTHER
    date: Optional[datetime] = None
    notes: Optional[str] = None

class ExpenseUpdate(BaseModel):
    description: Optional[str] = Field(default=None, min_length=1, max_length=300)
    amount_cents: Optional[int] = None
    category: Optional[ExpenseCategory] = None
    date: Optional[datetime] = None
    notes: Optional[str] = None

class ExpenseOut(BaseModel):
    id: int
    description: str
    amount_cents: int
    category: ExpenseCategory
    date: datetime
    notes: Optional[str] = None
    created_by_id: int
    created_at: datetime
    updated_at: datetime


# ---- Caisse ----
class EmployeeRevenue(BaseModel):
    user_id: int
    name: str
    total_cents: int
    payments_count: int

class CaissePeriod(BaseModel):
    scope: CaisseScope
    period_start: datetime
    period_end: datetime
    total_income_cents: int
    total_expense_cents: int
    balance_cents: int
    payments_count: int
    expenses_count: int
    revenue_by_employee: List[EmployeeRevenue] = []

class ClosureCreate(BaseModel):
    notes: Optional[str] = None

class ClosureOut(BaseModel):
    id: int
    scope: CaisseScope
    period_start: datetime
    closure_date: datetime
    total_income_cents: int
    total_expense_cents: int
    balance_cents: int
    notes: Optional[str] = None
    created_by_id: int


# ---- Tableau de bord ----
class MonthlyTotals(BaseModel):
    month: str
    revenue_cents: int
    expenses_cents: int

class RecentDevis(BaseModel):
    id: int
    reference: str
    status: DevisStatus
    total_cents: int
    client_name: str
    created_at: datetime

class DashboardOut(BaseModel):
    clients_count: int
    employees_count: int
    devis_count: int
    invoices_count: int
    total_revenue_cents: int
    total_expenses_cents: int
    net_profit_cents: int
    devis_by_status: Dict[str, int]
    monthly: List[MonthlyTotals]
    recent_devis: List[RecentDevis]
