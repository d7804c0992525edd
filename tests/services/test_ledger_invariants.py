"""
Property tests: after any sequence of operations the books still agree.

- Stored balance == signed sum of completed transactions, per account.
- Total debits == total credits across the journal.
- Every completed transaction validates.
"""

from datetime import date, timedelta
from uuid import uuid4

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from ledger_kernel.exceptions import BusinessRuleError
from ledger_kernel.models.account import Account
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.transaction_processor import LedgerTransactionProcessor

ACCOUNT_KINDS = ("checking", "savings", "credit")

operations = st.lists(
    st.one_of(
        st.tuples(
            st.just("create"),
            st.integers(0, 2),
            st.sampled_from(["income", "expense"]),
            st.sampled_from(["completed", "pending"]),
            st.integers(1, 50_000),
            st.integers(0, 60),
        ),
        st.tuples(st.just("transfer"), st.integers(0, 2), st.integers(0, 2), st.integers(1, 20_000)),
        st.tuples(st.just("pay"), st.integers(0, 1), st.integers(1, 20_000)),
        st.tuples(st.just("edit"), st.integers(0, 100), st.integers(1, 50_000)),
        st.tuples(st.just("delete"), st.integers(0, 100)),
        st.tuples(st.just("settle"), st.integers(0, 100)),
    ),
    min_size=1,
    max_size=15,
)


def _open_accounts(session, owner_id):
    accounts = [
        Account(owner_id=owner_id, name="Checking", account_type="checking", balance=0),
        Account(owner_id=owner_id, name="Savings", account_type="savings", balance=0),
        Account(
            owner_id=owner_id,
            name="Card",
            account_type="credit",
            balance=0,
            limit_amount=30_000,
            closing_day=5,
            due_day=15,
        ),
    ]
    session.add_all(accounts)
    session.flush()
    return accounts


def _apply(processor, owner_id, accounts, op, created):
    kind = op[0]
    if kind == "create":
        _, idx, txn_type, status, amount, offset = op
        result = processor.create_transaction(owner_id, {
            "description": "Generated",
            "amount": amount,
            "date": (date(2025, 1, 1) + timedelta(days=offset)).isoformat(),
            "type": txn_type,
            "status": status,
            "account_id": str(accounts[idx].id),
        })
        created.append(result.transaction.id)
    elif kind == "transfer":
        _, src, dst, amount = op
        result = processor.transfer(owner_id, {
            "from_account_id": str(accounts[src].id),
            "to_account_id": str(accounts[dst].id),
            "amount": amount,
            "date": "2025-01-20",
        })
        created.extend(t.id for t in result.transactions)
    elif kind == "pay":
        _, payer, amount = op
        result = processor.pay_credit_card_bill(owner_id, {
            "credit_account_id": str(accounts[2].id),
            "debit_account_id": str(accounts[payer].id),
            "amount": amount,
            "payment_date": "2025-01-20",
        })
        created.extend(t.id for t in result.transactions)
    elif created:
        target = created[op[1] % len(created)]
        if kind == "edit":
            processor.edit_transaction(owner_id, target, {"amount": op[2]})
        elif kind == "settle":
            processor.mark_as_paid(owner_id, target)
        else:
            processor.delete_transaction(owner_id, target)
            remaining = {t.id for t in LedgerSelector(processor.session).transactions(owner_id)}
            created[:] = [t for t in created if t in remaining]


class TestLedgerInvariants:

    @settings(
        max_examples=25,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    @given(ops=operations)
    def test_books_always_agree(self, session, deterministic_clock, ops):
        owner_id = uuid4()
        accounts = _open_accounts(session, owner_id)
        processor = LedgerTransactionProcessor(session, clock=deterministic_clock)
        created = []

        for op in ops:
            try:
                _apply(processor, owner_id, accounts, op, created)
            except BusinessRuleError:
                # rejected operations must leave no trace; checked below
                pass

        selector = LedgerSelector(session)
        for account in accounts:
            stored = selector.account(owner_id, account.id).balance
            assert stored == selector.derived_balance(owner_id, account.id)

        debits, credits = selector.total_debits_credits(owner_id)
        assert debits == credits

        for txn in selector.transactions(owner_id):
            if txn.status == "completed":
                assert selector.validate_transaction(owner_id, txn.id).valid
