"""
Billing enumerations for contracts, ledger entries and payments.
"""

import enum


class ContractType(str, enum.Enum):
    """Contract type enumeration."""
    TENANT = "TENANT"  # Tenant pays rent
    OWNER_OBLIGATION = "OWNER_OBLIGATION"  # Owner-side expenses, no rent


class ContractStatus(str, enum.Enum):
    """Contract lifecycle enumeration."""
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"  # Past its last month, no new periods


class RecordStatus(str, enum.Enum):
    """Ledger entry (monthly record) status enumeration."""
    PENDING = "PENDING"  # Nothing paid
    PARTIAL = "PARTIAL"  # Paid less than total due
    COMPLETE = "COMPLETE"  # Paid at least total due


class DebtStatus(str, enum.Enum):
    """Debt status enumeration."""
    OPEN = "OPEN"  # Created by a month close, nothing paid
    PARTIAL = "PARTIAL"
    PAID = "PAID"


class ConceptKind(str, enum.Enum):
    """Concept codes produced by the engine itself."""
    ALQUILER = "ALQUILER"  # Rent in force for the period
    PUNITORIOS = "PUNITORIOS"  # Late-payment interest
    A_FAVOR = "A_FAVOR"  # Credit carried from the previous period
    IVA = "IVA"  # Entered manually at payment time
    SOBREPAGO = "SOBREPAGO"  # Overpayment line of a payment snapshot
    ALQUILER_DEUDA = "ALQUILER_DEUDA"  # Rent and charges paid through a debt, snapshot only


class ConceptCategory(str, enum.Enum):
    """Category of an ad-hoc concept type."""
    SERVICIO = "SERVICIO"
    EXPENSA = "EXPENSA"
    IMPUESTO = "IMPUESTO"
    DESCUENTO = "DESCUENTO"  # Subtracts from total due
    BONIFICACION = "BONIFICACION"  # Subtracts from total due
    OTRO = "OTRO"


SUBTRACTIVE_CATEGORIES = {ConceptCategory.DESCUENTO, ConceptCategory.BONIFICACION}


class PaymentMethod(str, enum.Enum):
    """Payment method enumeration."""
    EFECTIVO = "EFECTIVO"
    TRANSFERENCIA = "TRANSFERENCIA"
    CHEQUE = "CHEQUE"
    TARJETA = "TARJETA"
    OTRO = "OTRO"


class AdjustmentOutcomeStatus(str, enum.Enum):
    """Per-contract result of a best-effort adjustment batch."""
    APPLIED = "APPLIED"
    FAILED = "FAILED"
