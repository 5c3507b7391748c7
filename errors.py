from typing import Optional


class LedgerError(Exception):
    """Base class for every error raised by the ledger."""


class RecordSourceError(LedgerError):
    """The record source could not be opened or read. Always fatal."""

    def __init__(self, detail: str, path: Optional[str] = None, line: Optional[int] = None):
        super().__init__(detail)
        self.detail = detail
        self.path = path
        self.line = line


class LedgerWarning(LedgerError):
    """A record was rejected and left the ledger untouched.

    Warnings are per-record: the run carries on with the next record.
    """

    code = "LEDGER_WARNING"

    def __init__(
        self,
        detail: str,
        tx_id: Optional[int] = None,
        client_id: Optional[int] = None,
    ):
        super().__init__(detail)
        self.detail = detail
        self.tx_id = tx_id
        self.client_id = client_id


class MalformedRecord(LedgerWarning):
    code = "MALFORMED_RECORD"

    def __init__(self, detail: str, line: Optional[int] = None, **kwargs):
        super().__init__(detail, **kwargs)
        self.line = line


class AccountLocked(LedgerWarning):
    code = "ACCOUNT_LOCKED"


class DuplicateTransactionId(LedgerWarning):
    code = "DUPLICATE_TRANSACTION_ID"


class InsufficientFundsOrLocked(LedgerWarning):
    code = "INSUFFICIENT_FUNDS_OR_LOCKED"


class UnknownOrForeignReference(LedgerWarning):
    code = "UNKNOWN_OR_FOREIGN_REFERENCE"
