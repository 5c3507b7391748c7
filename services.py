from typing import Iterable, List, Optional

import structlog

from config import Settings, get_settings
from errors import (
    AccountLocked,
    DuplicateTransactionId,
    InsufficientFundsOrLocked,
    LedgerWarning,
    UnknownOrForeignReference,
)
from models import (
    Account,
    AccountSnapshot,
    Chargeback,
    Deposit,
    Dispute,
    DisputeEntry,
    DisputeState,
    LedgerReport,
    RawRecord,
    Resolve,
    Transaction,
    Withdrawal,
    parse_record,
)
from repositories import (
    AccountRepository,
    DisputeIndex,
    InMemoryAccountRepository,
    InMemoryDisputeIndex,
)

logger = structlog.get_logger()


class LedgerEngine:
    """Folds transactions, one at a time and in stream order, into accounts.

    The engine owns its account repository and dispute index. Every rejected
    transaction raises a LedgerWarning before anything is stored, so a
    warning always means the ledger is unchanged (apart from the lazily
    created empty account of the referenced client).
    """

    def __init__(
        self,
        account_repo: Optional[AccountRepository] = None,
        dispute_index: Optional[DisputeIndex] = None,
        settings: Optional[Settings] = None,
    ):
        self.account_repo = account_repo if account_repo is not None else InMemoryAccountRepository()
        self.dispute_index = dispute_index if dispute_index is not None else InMemoryDisputeIndex()
        self.settings = settings if settings is not None else get_settings()

    def apply(self, transaction: Transaction) -> None:
        """Apply one transaction. Raises LedgerWarning when it is a no-op."""
        account = self.account_repo.get_or_create(transaction.client_id)

        if isinstance(transaction, Deposit):
            self._apply_deposit(transaction, account)
        elif isinstance(transaction, Withdrawal):
            self._apply_withdrawal(transaction, account)
        elif isinstance(transaction, Dispute):
            self._apply_dispute(transaction, account)
        elif isinstance(transaction, Resolve):
            self._apply_resolve(transaction, account)
        elif isinstance(transaction, Chargeback):
            self._apply_chargeback(transaction, account)
        else:
            raise TypeError(f"Unsupported transaction: {transaction!r}")

        if self.settings.enable_detailed_logging:
            updated = self.account_repo.get(transaction.client_id)
            logger.debug(
                "Transaction applied",
                type=transaction.type,
                tx_id=transaction.tx_id,
                client_id=transaction.client_id,
                available=str(updated.available),
                held=str(updated.held),
                locked=updated.locked,
            )

    def snapshot(self) -> List[AccountSnapshot]:
        """Current state of every account, ordered by client id."""
        precision = self.settings.amount_precision
        return [account.to_snapshot(precision) for account in self.account_repo.all()]

    def _apply_deposit(self, transaction: Deposit, account: Account) -> None:
        if account.locked:
            raise AccountLocked(
                "Account is locked",
                tx_id=transaction.tx_id,
                client_id=transaction.client_id,
            )
        if transaction.tx_id in self.dispute_index:
            raise DuplicateTransactionId(
                "Transaction id already used by an earlier deposit",
                tx_id=transaction.tx_id,
                client_id=transaction.client_id,
            )

        self.account_repo.save(
            account.model_copy(update={"available": account.available + transaction.amount})
        )
        self.dispute_index.save(
            transaction.tx_id,
            DisputeEntry(client_id=transaction.client_id, amount=transaction.amount),
        )

    def _apply_withdrawal(self, transaction: Withdrawal, account: Account) -> None:
        if account.locked or account.available < transaction.amount:
            raise InsufficientFundsOrLocked(
                "Account is locked" if account.locked else "Insufficient available funds",
                tx_id=transaction.tx_id,
                client_id=transaction.client_id,
            )

        self.account_repo.save(
            account.model_copy(update={"available": account.available - transaction.amount})
        )

    def _apply_dispute(self, transaction: Dispute, account: Account) -> None:
        entry = self._referenced_entry(transaction, account, DisputeState.normal)

        # available may go negative when the deposit was already withdrawn
        self.account_repo.save(
            account.model_copy(
                update={
                    "available": account.available - entry.amount,
                    "held": account.held + entry.amount,
                }
            )
        )
        self.dispute_index.save(
            transaction.tx_id, entry.model_copy(update={"state": DisputeState.disputed})
        )

    def _apply_resolve(self, transaction: Resolve, account: Account) -> None:
        entry = self._referenced_entry(transaction, account, DisputeState.disputed)

        self.account_repo.save(
            account.model_copy(
                update={
                    "available": account.available + entry.amount,
                    "held": account.held - entry.amount,
                }
            )
        )
        self.dispute_index.save(
            transaction.tx_id, entry.model_copy(update={"state": DisputeState.normal})
        )

    def _apply_chargeback(self, transaction: Chargeback, account: Account) -> None:
        entry = self._referenced_entry(transaction, account, DisputeState.disputed)

        self.account_repo.save(
            account.model_copy(update={"held": account.held - entry.amount, "locked": True})
        )
        self.dispute_index.save(
            transaction.tx_id, entry.model_copy(update={"state": DisputeState.charged_back})
        )

    def _referenced_entry(
        self,
        transaction: Transaction,
        account: Account,
        expected_state: DisputeState,
    ) -> DisputeEntry:
        """Look up the deposit a dispute, resolve or chargeback refers to."""
        if account.locked and self.settings.lock_blocks_disputes:
            raise AccountLocked(
                "Account is locked",
                tx_id=transaction.tx_id,
                client_id=transaction.client_id,
            )

        entry = self.dispute_index.get(transaction.tx_id)
        if entry is None:
            detail = "Unknown transaction"
        elif entry.client_id != transaction.client_id:
            detail = "Transaction belongs to another client"
        elif entry.state != expected_state:
            detail = f"Transaction is {entry.state.value}, expected {expected_state.value}"
        else:
            return entry

        raise UnknownOrForeignReference(
            detail,
            tx_id=transaction.tx_id,
            client_id=transaction.client_id,
        )


def process_records(records: Iterable[RawRecord], engine: LedgerEngine) -> LedgerReport:
    """Parse and apply every record in order, counting the rejected ones."""
    report = LedgerReport()

    for raw in records:
        report.records_read += 1
        try:
            engine.apply(parse_record(raw))
        except LedgerWarning as e:
            report.count_warning(e.code)
            logger.warning(
                "Record rejected",
                warning_code=e.code,
                detail=e.detail,
                tx_id=e.tx_id,
                client_id=e.client_id,
                line=raw.line,
            )
            continue
        report.records_applied += 1

    logger.info(
        "Ledger run completed",
        records_read=report.records_read,
        records_applied=report.records_applied,
        warnings=report.warnings_total,
        accounts=engine.account_repo.count(),
    )
    return report


# Factory function for dependency injection
def get_ledger_engine(settings: Optional[Settings] = None) -> LedgerEngine:
    return LedgerEngine(
        InMemoryAccountRepository(),
        InMemoryDisputeIndex(),
        settings=settings,
    )
