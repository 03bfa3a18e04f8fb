# core/domain/hooks.py
from __future__ import annotations

from typing import Any, Optional


def on_transition(from_state: Optional[Any], to_state: Any, field_name: str = "status"):
    """
    Mark a StatefulDomainModel method as a state transition hook.

    from_state=None matches any previous state.

    Example:

        class PurchaseOrder(StatefulDomainModel):
            @on_transition(Status.SUBMITTED, Status.APPROVED)
            def _on_approved(self):
                self.emit(PurchaseOrderApproved(po_id=self.pk, number=self.number))

    The hook runs after save() once the database transaction commits.
    """

    def decorator(func):
        setattr(func, "__transition__", (field_name, from_state, to_state))
        return func

    return decorator
