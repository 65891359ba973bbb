"""Erreurs métier du registre devis/factures.

Chaque erreur porte un `code` stable (lisible par machine) et le statut HTTP
renvoyé par le gestionnaire enregistré dans `atelier.main`.
"""
from __future__ import annotations


class LedgerError(Exception):
    code = "LEDGER_ERROR"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LedgerError):
    code = "VALIDATION_ERROR"
    status_code = 422


class StateConflictError(LedgerError):
    code = "STATE_CONFLICT"
    status_code = 409


class OverpaymentError(LedgerError):
    code = "OVERPAYMENT"
    status_code = 409

    def __init__(self, amount_cents: int, remaining_cents: int):
        super().__init__(
            f"Payment of {amount_cents} exceeds remaining balance {remaining_cents}"
        )
        self.amount_cents = amount_cents
        self.remaining_cents = remaining_cents


class NotFoundError(LedgerError):
    code = "NOT_FOUND"
    status_code = 404


class PermissionDeniedError(LedgerError):
    code = "PERMISSION_DENIED"
    status_code = 403
