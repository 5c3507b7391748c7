from datetime import datetime
from decimal import ROUND_HALF_EVEN, Decimal, localcontext
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from errors import MalformedRecord

ClientId = Annotated[int, Field(ge=0, le=65535, description="Client identifier")]
TransactionId = Annotated[int, Field(ge=0, le=4294967295, description="Transaction identifier")]
Amount = Annotated[
    Decimal,
    Field(
        gt=0,
        max_digits=16,
        decimal_places=4,
        allow_inf_nan=False,
        description="Strictly positive amount, at most 12 integer and 4 fractional digits",
    ),
]


class TransactionType(str, Enum):
    deposit = "deposit"
    withdrawal = "withdrawal"
    dispute = "dispute"
    resolve = "resolve"
    chargeback = "chargeback"


AMOUNT_BEARING_TYPES = frozenset({TransactionType.deposit.value, TransactionType.withdrawal.value})


class RawRecord(BaseModel):
    """Untyped field bag as read from a record source, before validation."""

    type: Optional[str] = Field(None, description="Transaction kind")
    client: Optional[str] = Field(None, description="Client identifier")
    tx: Optional[str] = Field(None, description="Transaction identifier")
    amount: Optional[str] = Field(None, description="Amount for deposits and withdrawals")
    line: Optional[int] = Field(None, description="1-based position in the source, if known")

    @field_validator('type', 'client', 'tx', 'amount', mode='before')
    @classmethod
    def normalize_field(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class _TransactionBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    tx_id: TransactionId
    client_id: ClientId


class Deposit(_TransactionBase):
    """A credit to the client's account. The only disputable kind."""

    type: Literal["deposit"] = "deposit"
    amount: Amount


class Withdrawal(_TransactionBase):
    """A debit from the client's available funds."""

    type: Literal["withdrawal"] = "withdrawal"
    amount: Amount


class Dispute(_TransactionBase):
    """A claim against an earlier deposit; moves its amount into held."""

    type: Literal["dispute"] = "dispute"


class Resolve(_TransactionBase):
    """Ends a dispute and releases the held amount."""

    type: Literal["resolve"] = "resolve"


class Chargeback(_TransactionBase):
    """Ends a dispute by reversing the deposit and locking the account."""

    type: Literal["chargeback"] = "chargeback"


Transaction = Annotated[
    Union[Deposit, Withdrawal, Dispute, Resolve, Chargeback],
    Field(discriminator="type"),
]

_transaction_adapter: TypeAdapter = TypeAdapter(Transaction)


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"])
        parts.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "; ".join(parts)


def parse_record(raw: RawRecord) -> Transaction:
    """Validate one raw record into exactly one transaction variant.

    Raises MalformedRecord when a required field is missing, a number cannot
    be parsed, an amount is not strictly positive or exceeds 4 decimal places
    or 16 digits, an identifier is out of range or the kind is unknown. An
    amount given on a dispute, resolve or chargeback row is ignored.
    """
    if raw.type is None:
        raise MalformedRecord("type: Field required", line=raw.line)

    kind = raw.type.lower()
    payload = {"type": kind, "tx_id": raw.tx, "client_id": raw.client}
    if kind in AMOUNT_BEARING_TYPES:
        payload["amount"] = raw.amount

    try:
        return _transaction_adapter.validate_python(
            {key: value for key, value in payload.items() if value is not None}
        )
    except ValidationError as exc:
        raise MalformedRecord(_describe_validation_error(exc), line=raw.line) from exc


def quantize_amount(value: Decimal, precision: int) -> Decimal:
    with localcontext() as ctx:
        # quantize needs room for every integer digit plus the requested scale
        ctx.prec = max(ctx.prec, value.adjusted() + precision + 2)
        quantized = value.quantize(Decimal(1).scaleb(-precision), rounding=ROUND_HALF_EVEN)
        # Adding zero turns -0.0000 into 0.0000
        return quantized + Decimal(0)


class AccountSnapshot(BaseModel):
    client: int = Field(..., description="Client identifier")
    available: Decimal = Field(..., description="Funds available for withdrawal")
    held: Decimal = Field(..., description="Funds held by open disputes")
    total: Decimal = Field(..., description="available + held")
    locked: bool = Field(..., description="Set once a chargeback occurred")


class Account(BaseModel):
    """Balances of one client. Immutable; the engine stores updated copies."""

    model_config = ConfigDict(frozen=True)

    client_id: int
    available: Decimal = Decimal("0")
    held: Decimal = Decimal("0")
    locked: bool = False

    @property
    def total(self) -> Decimal:
        return self.available + self.held

    def to_snapshot(self, precision: int = 4) -> AccountSnapshot:
        available = quantize_amount(self.available, precision)
        held = quantize_amount(self.held, precision)
        # total comes from the rounded parts so the snapshot still adds up
        with localcontext() as ctx:
            digits = max(len(available.as_tuple().digits), len(held.as_tuple().digits))
            ctx.prec = max(ctx.prec, digits + 1)
            total = available + held

        return AccountSnapshot(
            client=self.client_id,
            available=available,
            held=held,
            total=total,
            locked=self.locked,
        )


class DisputeState(str, Enum):
    normal = "normal"
    disputed = "disputed"
    charged_back = "charged_back"


class DisputeEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    client_id: int
    amount: Decimal
    state: DisputeState = DisputeState.normal


class LedgerReport(BaseModel):
    records_read: int = Field(0, description="Records pulled from the source")
    records_applied: int = Field(0, description="Records that changed the ledger")
    warnings: Dict[str, int] = Field(default_factory=dict, description="Rejected records by warning code")

    @property
    def warnings_total(self) -> int:
        return sum(self.warnings.values())

    def count_warning(self, code: str) -> None:
        self.warnings[code] = self.warnings.get(code, 0) + 1


class LedgerBatchRequest(BaseModel):
    records: List[RawRecord] = Field(..., description="Raw records in stream order")


class LedgerBatchResponse(BaseModel):
    accounts: List[AccountSnapshot] = Field(..., description="Final accounts ordered by client")
    report: LedgerReport = Field(..., description="Processing counters")


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Error description")
    error_code: str = Field(..., description="Machine-readable error code")
    timestamp: datetime = Field(default_factory=datetime.now, description="Error timestamp")


class HealthResponse(BaseModel):
    status: str = Field(..., description="Service health status")
    version: str = Field(..., description="Service version")
    timestamp: datetime = Field(default_factory=datetime.now)
