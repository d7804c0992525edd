"""
ScopeResolver -- loads a transaction's chain and resolves an edit/delete scope.

Responsibility:
    Reads the flat chain (root plus children by parent_transaction_id),
    applies domain/scope.select_affected(), and adds the partner leg of any
    linked pair so transfers and bill payments are always handled whole.

Architecture position:
    Kernel > Services -- read side of the processor's edit/delete paths.

Invariants enforced:
    - See domain/scope.py for chain semantics.
    - A linked leg never resolves without its partner.
    - A delete never leaves a fixed-series template without occurrences.
"""

from __future__ import annotations

from uuid import UUID

from ledger_kernel.domain.scope import ChainMember, select_affected, with_emptied_root
from ledger_kernel.domain.values import EditScope
from ledger_kernel.models.transaction import Transaction
from ledger_kernel.services.ledger_store import LedgerStore


def to_chain_member(transaction: Transaction) -> ChainMember:
    return ChainMember(
        id=transaction.id,
        effective_date=transaction.effective_date,
        parent_transaction_id=transaction.parent_transaction_id,
        is_fixed=transaction.is_fixed,
        installments=transaction.installments,
        current_installment=transaction.current_installment,
    )


class ScopeResolver:
    """Resolves the ids an operation on one transaction must touch."""

    def __init__(self, store: LedgerStore):
        self.store = store

    def resolve(
        self,
        owner_id: UUID,
        target: Transaction,
        scope: EditScope,
        *,
        deleting: bool = False,
    ) -> list[UUID]:
        """
        Affected transaction ids, in chain order, linked partners included.

        Args:
            owner_id: Owner of the target.
            target: The named transaction (already loaded).
            scope: Requested breadth.
            deleting: The ids will be deleted; a fixed-series template left
                without children is added.
        """
        member = to_chain_member(target)
        root_id = member.chain_root_id
        chain: list[ChainMember] = []
        if scope != EditScope.CURRENT and root_id is not None:
            chain = [
                to_chain_member(t) for t in self.store.load_chain(owner_id, root_id)
            ]

        selected = list(select_affected(member, chain, scope))
        if deleting and chain:
            selected = list(with_emptied_root(selected, member, chain))

        if target.linked_transaction_id is not None:
            partner_id = target.linked_transaction_id
            if partner_id not in selected:
                selected.append(partner_id)
        return selected
