"""
Taxonomie d'erreurs des services stock / achats.

Chaque erreur porte un `code` stable et le `status_code` HTTP que
l'adaptateur FastAPI renvoie. Les services ne connaissent pas HTTP ;
le mapping est juste transporté.
"""

from __future__ import annotations


class StockroomError(Exception):
    code = "stockroom_error"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFound(StockroomError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class ValidationError(StockroomError):
    code = "validation_error"
    status_code = 400


class InsufficientStock(ValidationError):
    code = "insufficient_stock"

    def __init__(self, inventory_id: int, available: int, requested: int):
        self.inventory_id = inventory_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for item {inventory_id} (available={available}, requested={requested})"
        )


class InvalidStateTransition(StockroomError):
    """
    `attempted` : statut visé (None pour une édition sans changement de
    statut) ; `action` : verbe de l'opération refusée.
    """

    code = "invalid_transition"
    status_code = 409

    def __init__(self, current: str, attempted: str | None, action: str | None = None):
        self.current = current
        self.attempted = attempted
        self.action = action or f"move to {attempted}"
        super().__init__(f"Cannot {self.action} requisition with status '{current}'")


class Conflict(StockroomError):
    code = "conflict"
    status_code = 409


class ConcurrencyConflict(Conflict):
    code = "concurrency_conflict"


class ReceiptError(StockroomError):
    """
    Échec du fan-out réception -> ledger.

    `recorded` vaut toujours 0 : la réception tourne dans une seule
    transaction, rien n'est posté si une ligne échoue.
    """

    code = "receipt_failed"
    status_code = 409

    def __init__(self, requisition_id: int, reason: str, recorded: int = 0):
        self.requisition_id = requisition_id
        self.recorded = recorded
        super().__init__(
            f"Receipt of requisition {requisition_id} failed, {recorded} stock transactions recorded: {reason}"
        )
