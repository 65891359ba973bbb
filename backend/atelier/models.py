from sqlalchemy import (
    Column, Integer, String, ForeignKey, BigInteger, DateTime, UniqueConstraint,
    Boolean, Float, Text,
)
from sqlalchemy.orm import relationship
from atelier.db import Base


class User(Base):
    # comptes gérés par le service d'identité; on ne lit que rôle/état/machines
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    first_name = Column(String, nullable=False, default="")
    last_name = Column(String, nullable=False, default="")
    role = Column(String, nullable=False, default="EMPLOYEE")        # ADMIN/EMPLOYEE
    is_active = Column(Boolean, nullable=False, default=True)


class UserMachine(Base):
    __tablename__ = "user_machines"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    machine = Column(String, nullable=False)
    __table_args__ = (
        UniqueConstraint("user_id", "machine", name="uq_user_machine"),
    )


class Client(Base):
    __tablename__ = "clients"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    address = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class MachinePricing(Base):
    __tablename__ = "machine_pricing"
    id = Column(Integer, primary_key=True, index=True)
    machine_type = Column(String, unique=True, nullable=False)
    price_cents = Column(BigInteger, nullable=False, default=0)      # prix par minute/mètre/pièce
    description = Column(String, nullable=True)
    updated_at = Column(DateTime, nullable=False)


class Material(Base):
    __tablename__ = "materials"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    price_per_unit_cents = Column(BigInteger, nullable=False, default=0)
    unit = Column(String, nullable=False)                            # m², m, pièce...
    description = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class FixedService(Base):
    __tablename__ = "fixed_services"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    price_cents = Column(BigInteger, nullable=False, default=0)
    description = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class Invoice(Base):
    __tablename__ = "invoices"
    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String, unique=True, index=True, nullable=False)  # ex: FAC-2025-0001
    total_cents = Column(BigInteger, nullable=False, default=0)
    currency = Column(String, nullable=False, default="TND")
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, nullable=False)
    client = relationship("Client")


class InvoiceItem(Base):
    __tablename__ = "invoice_items"
    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False)
    description = Column(String, nullable=False)
    quantity = Column(Float, nullable=False, default=1)
    unit_price_cents = Column(BigInteger, nullable=False, default=0)
    total_cents = Column(BigInteger, nullable=False, default=0)


class Devis(Base):
    __tablename__ = "devis"
    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String, unique=True, index=True, nullable=False)  # ex: DEV-2025-0001
    status = Column(String, nullable=False, default="DRAFT")
    total_cents = Column(BigInteger, nullable=False, default=0)
    notes = Column(Text, nullable=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=True)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)
    validated_at = Column(DateTime, nullable=True)
    client = relationship("Client")
    invoice = relationship("Invoice")


class DevisLine(Base):
    __tablename__ = "devis_lines"
    id = Column(Integer, primary_key=True, index=True)
    devis_id = Column(Integer, ForeignKey("devis.id", ondelete="CASCADE"), nullable=False, index=True)
    machine_type = Column(String, nullable=False)
    description = Column(String, nullable=True)
    minutes = Column(Float, nullable=True)
    meters = Column(Float, nullable=True)
    material_meters = Column(Float, nullable=True)                   # pliage uniquement
    quantity = Column(Float, nullable=True)
    width = Column(Float, nullable=True)
    height = Column(Float, nullable=True)
    dimension_unit = Column(String, nullable=True)                   # m / cm
    material_id = Column(Integer, ForeignKey("materials.id"), nullable=True)
    service_id = Column(Integer, ForeignKey("fixed_services.id"), nullable=True)
    # prix figés à la création de la ligne
    unit_price_cents = Column(BigInteger, nullable=False, default=0)
    material_cost_cents = Column(BigInteger, nullable=False, default=0)
    line_total_cents = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False)


class DevisServiceItem(Base):
    __tablename__ = "devis_services"
    id = Column(Integer, primary_key=True, index=True)
    devis_id = Column(Integer, ForeignKey("devis.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("fixed_services.id"), nullable=False)
    price_cents = Column(BigInteger, nullable=False, default=0)
    __table_args__ = (
        UniqueConstraint("devis_id", "service_id", name="uq_devis_service"),
    )


class Payment(Base):
    __tablename__ = "payments"
    id = Column(Integer, primary_key=True, index=True)
    # une seule cible: facture OU devis
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=True, index=True)
    devis_id = Column(Integer, ForeignKey("devis.id"), nullable=True, index=True)
    amount_cents = Column(BigInteger, nullable=False)
    payment_date = Column(DateTime, nullable=False, index=True)
    payment_method = Column(String, nullable=True)                   # Espèces/Chèque/Virement/...
    reference = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, nullable=False)


class Expense(Base):
    __tablename__ = "expenses"
    id = Column(Integer, primary_key=True, index=True)
    description = Column(String, nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    category = Column(String, nullable=False, default="OTHER")
    date = Column(DateTime, nullable=False, index=True)
    notes = Column(Text, nullable=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class FinancialClosure(Base):
    __tablename__ = "financial_closures"
    id = Column(Integer, primary_key=True, index=True)
    scope = Column(String, nullable=False)
    period_start = Column(DateTime, nullable=False)
    closure_date = Column(DateTime, nullable=False)                  # = fin de période
    total_income_cents = Column(BigInteger, nullable=False, default=0)
    total_expense_cents = Column(BigInteger, nullable=False, default=0)
    balance_cents = Column(BigInteger, nullable=False, default=0)
    notes = Column(Text, nullable=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    __table_args__ = (
        # deux clôtures simultanées ne peuvent pas revendiquer la même période
        UniqueConstraint("scope", "period_start", name="uq_closure_scope_start"),
    )
