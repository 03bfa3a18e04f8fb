# accounts/policy.py
"""
Single authorization table keyed by (role, action).

Grant.ALWAYS: the role may perform the action on any record.
Grant.OWNER:  the role may perform it only on records it authored.
Missing key:  denied.
"""
from __future__ import annotations

import enum
from typing import Optional

from django.utils.translation import gettext as _

from accounts.context import ActorContext
from accounts.roles import Role
from core.exceptions import Forbidden


class Action(str, enum.Enum):
    PO_CREATE = "po.create"
    PO_SUBMIT = "po.submit"
    PO_APPROVE = "po.approve"
    PO_ORDER = "po.order"
    PO_RECEIVE = "po.receive"
    PO_CANCEL = "po.cancel"
    PO_PAY = "po.pay"
    STOCK_ADD = "stock.add"
    STOCK_ADJUST = "stock.adjust"
    SUPPLIER_MANAGE = "supplier.manage"
    PRODUCT_MANAGE = "product.manage"
    PRODUCT_DELETE = "product.delete"
    ORDER_CREATE = "order.create"
    EXPENSE_RECORD = "expense.record"
    EXPENSE_RECORD_RESTRICTED = "expense.record_restricted"
    REPORT_VIEW_FINANCIALS = "report.view_financials"


class Grant(enum.Enum):
    ALWAYS = "always"
    OWNER = "owner"


POLICY: dict[tuple[Role, Action], Grant] = {
    # purchase orders
    (Role.BOSS, Action.PO_CREATE): Grant.ALWAYS,
    (Role.MANAGER, Action.PO_CREATE): Grant.ALWAYS,
    (Role.BOSS, Action.PO_SUBMIT): Grant.OWNER,
    (Role.MANAGER, Action.PO_SUBMIT): Grant.OWNER,
    (Role.BOSS, Action.PO_APPROVE): Grant.ALWAYS,
    (Role.BOSS, Action.PO_ORDER): Grant.ALWAYS,
    (Role.MANAGER, Action.PO_ORDER): Grant.ALWAYS,
    (Role.BOSS, Action.PO_RECEIVE): Grant.ALWAYS,
    (Role.MANAGER, Action.PO_RECEIVE): Grant.ALWAYS,
    (Role.BOSS, Action.PO_CANCEL): Grant.ALWAYS,
    (Role.MANAGER, Action.PO_CANCEL): Grant.OWNER,
    (Role.BOSS, Action.PO_PAY): Grant.ALWAYS,
    (Role.MANAGER, Action.PO_PAY): Grant.ALWAYS,
    # stock
    (Role.BOSS, Action.STOCK_ADD): Grant.ALWAYS,
    (Role.MANAGER, Action.STOCK_ADD): Grant.ALWAYS,
    (Role.BOSS, Action.STOCK_ADJUST): Grant.ALWAYS,
    # master data
    (Role.BOSS, Action.SUPPLIER_MANAGE): Grant.ALWAYS,
    (Role.BOSS, Action.PRODUCT_MANAGE): Grant.ALWAYS,
    (Role.MANAGER, Action.PRODUCT_MANAGE): Grant.ALWAYS,
    (Role.BOSS, Action.PRODUCT_DELETE): Grant.ALWAYS,
    # sales / expenses
    (Role.BOSS, Action.ORDER_CREATE): Grant.ALWAYS,
    (Role.MANAGER, Action.ORDER_CREATE): Grant.ALWAYS,
    (Role.BOSS, Action.EXPENSE_RECORD): Grant.ALWAYS,
    (Role.MANAGER, Action.EXPENSE_RECORD): Grant.ALWAYS,
    (Role.BOSS, Action.EXPENSE_RECORD_RESTRICTED): Grant.ALWAYS,
    # reports
    (Role.BOSS, Action.REPORT_VIEW_FINANCIALS): Grant.ALWAYS,
}


def is_allowed(actor: ActorContext, action: Action, *, owner_id: Optional[int] = None) -> bool:
    grant = POLICY.get((actor.role, action))
    if grant is Grant.ALWAYS:
        return True
    if grant is Grant.OWNER:
        return actor.owns(owner_id)
    return False


def authorize(actor: ActorContext, action: Action, *, owner_id: Optional[int] = None) -> None:
    """
    Raise Forbidden unless the policy table allows ``action`` for ``actor``.
    """
    if not is_allowed(actor, action, owner_id=owner_id):
        raise Forbidden(
            _("Role %(role)s may not perform '%(action)s'.") % {
                "role": actor.role.label,
                "action": action.value,
            },
            details={"action": action.value, "role": actor.role.value},
        )
