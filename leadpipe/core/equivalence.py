"""Tri-state approval/rejection predicates shared by every reader of outcome fields.

Sources encode outcomes loosely: ``passed`` on a form submission may arrive as a
boolean, a string (``"true"``, ``"reprovado"``) or a number, and compliance checks
carry both a ``status`` string and an ``aprovado`` flag. These predicates are the
only place that knows the literal sets.
"""

from typing import Any

APPROVAL_VALUES = frozenset({"true", "approved", "aprovado", "1"})
REJECTION_VALUES = frozenset({"false", "rejected", "reprovado", "0"})

COMPLIANCE_APPROVED_STATUSES = frozenset({"approved", "aprovado"})
COMPLIANCE_REJECTED_STATUSES = frozenset({"rejected", "reprovado"})
COMPLIANCE_TERMINAL_STATUSES = ("approved", "rejected")


def _token(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        if value == 1:
            return "1"
        if value == 0:
            return "0"
        return None
    return str(value).strip().lower()


def is_approval_equivalent(value: Any) -> bool:
    """True for ``True``, ``"true"``, ``"approved"``, ``"aprovado"`` and ``1``."""
    return _token(value) in APPROVAL_VALUES


def is_rejection_equivalent(value: Any) -> bool:
    """True for ``False``, ``"false"``, ``"rejected"``, ``"reprovado"`` and ``0``."""
    return _token(value) in REJECTION_VALUES


def is_compliance_rejected(status: str | None, aprovado: bool | None = None) -> bool:
    """Rejected compliance check: rejection status or an explicit ``aprovado=False``."""
    if (status or "").strip().lower() in COMPLIANCE_REJECTED_STATUSES:
        return True
    return aprovado is False


def is_compliance_approved(status: str | None, aprovado: bool | None = None) -> bool:
    """Approved compliance check: approval status or an explicit ``aprovado=True``."""
    if (status or "").strip().lower() in COMPLIANCE_APPROVED_STATUSES:
        return True
    return aprovado is True
