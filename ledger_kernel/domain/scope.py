"""
Scope selection -- which members of a transaction chain an edit or delete hits.

Responsibility:
    Given the named transaction, the members of its chain, and a requested
    EditScope, return the ids the operation must touch.  Loading the chain
    from storage is ScopeResolver's job (services/scope_resolver.py).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - CURRENT touches only the named transaction.
    - CURRENT_AND_REMAINING never touches a member dated (or numbered)
      before the named one.  On a fixed series the template root is only
      included when it is the named transaction.
    - ALL touches the root and every child.
    - A delete that takes every child of a fixed series takes its template
      too (with_emptied_root).
    - Transactions outside any chain always resolve to themselves.

Chains are flat: the root has parent_transaction_id = None and each child
points at the root.  A fixed series root has is_fixed = True; an installment
root is installment 1 and carries installments > 1.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Sequence
from uuid import UUID

from ledger_kernel.domain.values import EditScope


@dataclass(frozen=True)
class ChainMember:
    """The chain-relevant fields of one transaction."""

    id: UUID
    effective_date: date
    parent_transaction_id: UUID | None = None
    is_fixed: bool = False
    installments: int | None = None
    current_installment: int | None = None

    @property
    def is_chain_root(self) -> bool:
        return self.parent_transaction_id is None and (
            self.is_fixed or (self.installments or 0) > 1
        )

    @property
    def in_chain(self) -> bool:
        return self.parent_transaction_id is not None or self.is_chain_root

    @property
    def chain_root_id(self) -> UUID | None:
        if self.parent_transaction_id is not None:
            return self.parent_transaction_id
        return self.id if self.is_chain_root else None

    @property
    def is_installment(self) -> bool:
        return self.current_installment is not None


def _sort_key(member: ChainMember) -> tuple:
    return (member.effective_date, member.current_installment or 0, str(member.id))


def select_affected(
    target: ChainMember,
    chain: Sequence[ChainMember],
    scope: EditScope | str,
) -> tuple[UUID, ...]:
    """
    Ids affected by an operation on target under scope, in date order.

    Args:
        target: The named transaction.
        chain: Members of target's chain (root and children).  Members of
            other chains are ignored; target need not be included.
        scope: Requested breadth.

    Raises:
        ValueError: Unknown scope value.
    """
    scope = EditScope(scope)
    root_id = target.chain_root_id
    if scope == EditScope.CURRENT or root_id is None:
        return (target.id,)

    members = {
        m.id: m
        for m in chain
        if m.id == root_id or m.parent_transaction_id == root_id
    }
    members[target.id] = target

    if scope == EditScope.ALL:
        selected = list(members.values())
    elif target.is_installment:
        selected = [
            m
            for m in members.values()
            if m.current_installment is not None
            and m.current_installment >= target.current_installment
        ]
    else:
        selected = [
            m
            for m in members.values()
            if m.effective_date >= target.effective_date
            and (m.parent_transaction_id is not None or m.id == target.id)
        ]

    return tuple(m.id for m in sorted(selected, key=_sort_key))


def with_emptied_root(
    affected: Sequence[UUID],
    target: ChainMember,
    chain: Sequence[ChainMember],
) -> tuple[UUID, ...]:
    """
    affected plus the fixed-series template when affected covers every child.

    Used on deletes: removing the remaining occurrences from the first one
    onward must not leave a template with no occurrences behind.
    """
    root_id = target.chain_root_id
    root = next((m for m in chain if m.id == root_id), None)
    if root is None or not root.is_fixed or root_id in affected:
        return tuple(affected)
    chosen = set(affected)
    children = [m for m in chain if m.parent_transaction_id == root_id]
    if all(m.id in chosen for m in children):
        return (root_id, *affected)
    return tuple(affected)
