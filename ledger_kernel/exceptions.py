"""
Typed exception hierarchy for the ledger core.

Every failure that aborts a unit of work is raised as a subclass of
LedgerError.  Each class carries a machine-readable ``code`` class attribute
and stores its context as attributes, so callers catch by type and read
structured data instead of parsing messages.

    LedgerError
    |
    +-- InventoryError
    |   +-- InsufficientStockError
    |   +-- InvalidQuantityError
    |   +-- AllocationQuantityMismatchError
    |
    +-- PostingError
    |   +-- EmptyJournalError
    |   +-- InvalidJournalLineError
    |   +-- UnbalancedJournalError
    |   +-- MissingEntityError
    |   +-- InvalidEntityTypeError
    |   +-- MissingAccountError
    |   +-- SubtotalMismatchError
    |   +-- AlreadyPostedError
    |
    +-- AccountError
    |   +-- AccountNotFoundError
    |
    +-- CurrencyError
    |   +-- ExchangeRateNotFoundError
    |
    +-- ReversalError
    |   +-- JournalNotFoundError
    |   +-- JournalAlreadyReversedError
    |
    +-- DocumentError
        +-- DocumentNotFoundError
        +-- InvalidStateTransitionError

Handling pattern:

    try:
        core.approve(document_id, actor_id)
    except InsufficientStockError as e:
        # a concurrent posting consumed the lot; retry with a fresh plan
        ...
    except PostingError as e:
        return {"error": e.code}

The one condition deliberately NOT raised is a shortfall while reversing
stock: the ledger reverses what is available and logs
``stock_reversal_shortfall`` at WARNING.
"""

from decimal import Decimal


class LedgerError(Exception):
    """Base exception for all ledger core errors."""

    code: str = "LEDGER_ERROR"


# Inventory


class InventoryError(LedgerError):
    """Base exception for stock ledger and allocation errors."""

    code: str = "INVENTORY_ERROR"


class InsufficientStockError(InventoryError):
    """
    Requested quantity exceeds what is available.

    ``lot_id`` is None when the shortfall is aggregate across lots
    (raised by the allocator) rather than against one batch.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: str,
        warehouse_id: str,
        requested: Decimal,
        available: Decimal,
        lot_id: str | None = None,
    ):
        self.product_id = product_id
        self.warehouse_id = warehouse_id
        self.lot_id = lot_id
        self.requested = requested
        self.available = available
        where = f"lot {lot_id}" if lot_id is not None else "all lots"
        super().__init__(
            f"Insufficient stock for product {product_id} in warehouse "
            f"{warehouse_id} ({where}): requested {requested}, available {available}"
        )


class InvalidQuantityError(InventoryError):
    """Quantity must be positive and unit cost non-negative."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, value: Decimal):
        self.field = field
        self.value = value
        super().__init__(f"Invalid {field}: {value}")


class AllocationQuantityMismatchError(InventoryError):
    """Lot allocations for a document line do not add up to its quantity."""

    code: str = "ALLOCATION_QUANTITY_MISMATCH"

    def __init__(self, line_no: int, line_quantity: Decimal, allocated: Decimal):
        self.line_no = line_no
        self.line_quantity = line_quantity
        self.allocated = allocated
        super().__init__(
            f"Line {line_no}: allocated {allocated} does not match quantity {line_quantity}"
        )


# Posting


class PostingError(LedgerError):
    """Base exception for journal posting errors."""

    code: str = "POSTING_ERROR"


class EmptyJournalError(PostingError):
    """A journal must carry at least one line."""

    code: str = "EMPTY_JOURNAL"

    def __init__(self, source_type: str | None = None, source_id: str | None = None):
        self.source_type = source_type
        self.source_id = source_id
        super().__init__(f"Journal has no lines (source {source_type}:{source_id})")


class InvalidJournalLineError(PostingError):
    """A line must carry exactly one positive side."""

    code: str = "INVALID_JOURNAL_LINE"

    def __init__(self, line_no: int, debit: Decimal, credit: Decimal):
        self.line_no = line_no
        self.debit = debit
        self.credit = credit
        super().__init__(
            f"Line {line_no}: exactly one of debit ({debit}) / credit ({credit}) "
            "must be positive"
        )


class UnbalancedJournalError(PostingError):
    """Debits and credits differ by more than the posting tolerance."""

    code: str = "UNBALANCED_JOURNAL"

    def __init__(self, debits: Decimal, credits: Decimal, tolerance: Decimal):
        self.debits = debits
        self.credits = credits
        self.tolerance = tolerance
        super().__init__(
            f"Journal not balanced: debits={debits}, credits={credits} "
            f"(tolerance {tolerance})"
        )


class MissingEntityError(PostingError):
    """A receivable/payable line has no trading partner."""

    code: str = "MISSING_ENTITY"

    def __init__(self, line_no: int, account_code: str):
        self.line_no = line_no
        self.account_code = account_code
        super().__init__(
            f"Line {line_no}: account {account_code} requires entity_type and entity_id"
        )


class InvalidEntityTypeError(PostingError):
    """Entity type is unknown, or not the kind the account expects."""

    code: str = "INVALID_ENTITY_TYPE"

    def __init__(self, line_no: int, entity_type: str, expected: str | None = None):
        self.line_no = line_no
        self.entity_type = entity_type
        self.expected = expected
        message = f"Line {line_no}: invalid entity type {entity_type!r}"
        if expected is not None:
            message += f" (account expects {expected})"
        super().__init__(message)


class MissingAccountError(PostingError):
    """An account a document line (or the document) needs is not configured."""

    code: str = "MISSING_ACCOUNT"

    def __init__(
        self,
        role: str,
        line_no: int | None = None,
        product_id: str | None = None,
    ):
        self.role = role
        self.line_no = line_no
        self.product_id = product_id
        where = f"line {line_no}" if line_no is not None else "document"
        super().__init__(
            f"No {role} account configured for {where}"
            + (f" (product {product_id})" if product_id else "")
        )


class SubtotalMismatchError(PostingError):
    """Grouped line totals or document totals do not reconcile."""

    code: str = "SUBTOTAL_MISMATCH"

    def __init__(self, check: str, expected: Decimal, actual: Decimal):
        self.check = check
        self.expected = expected
        self.actual = actual
        super().__init__(f"{check} mismatch: expected {expected}, got {actual}")


class AlreadyPostedError(PostingError):
    """The document already has active journals."""

    code: str = "ALREADY_POSTED"

    def __init__(self, source_type: str, source_id: str):
        self.source_type = source_type
        self.source_id = source_id
        super().__init__(f"{source_type} {source_id} is already posted")


# Accounts / currency


class AccountError(LedgerError):
    """Base exception for account errors."""

    code: str = "ACCOUNT_ERROR"


class AccountNotFoundError(AccountError):
    """No account exists for the given code or id."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_ref: str):
        self.account_ref = account_ref
        super().__init__(f"Account not found: {account_ref}")


class CurrencyError(LedgerError):
    """Base exception for currency errors."""

    code: str = "CURRENCY_ERROR"


class ExchangeRateNotFoundError(CurrencyError):
    """No usable conversion rate for a document currency."""

    code: str = "EXCHANGE_RATE_NOT_FOUND"

    def __init__(self, currency_code: str):
        self.currency_code = currency_code
        super().__init__(f"No exchange rate for currency {currency_code}")


# Reversal


class ReversalError(LedgerError):
    """Base exception for reversal errors."""

    code: str = "REVERSAL_ERROR"


class JournalNotFoundError(ReversalError):
    """Journal header does not exist."""

    code: str = "JOURNAL_NOT_FOUND"

    def __init__(self, journal_id: str):
        self.journal_id = journal_id
        super().__init__(f"Journal not found: {journal_id}")


class JournalAlreadyReversedError(ReversalError):
    """Journal already has an active reversal, or is tombstoned."""

    code: str = "JOURNAL_ALREADY_REVERSED"

    def __init__(self, journal_id: str, reversal_id: str | None = None):
        self.journal_id = journal_id
        self.reversal_id = reversal_id
        super().__init__(
            f"Journal {journal_id} is already reversed"
            + (f" by {reversal_id}" if reversal_id else "")
        )


# Documents


class DocumentError(LedgerError):
    """Base exception for source document errors."""

    code: str = "DOCUMENT_ERROR"


class DocumentNotFoundError(DocumentError):
    """Source document does not exist."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


class InvalidStateTransitionError(DocumentError):
    """Lifecycle action is not allowed from the document's current state."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        document_id: str | None,
        action: str,
        status: str,
        edit_request_status: str | None = None,
    ):
        self.document_id = document_id
        self.action = action
        self.status = status
        self.edit_request_status = edit_request_status
        super().__init__(
            f"Cannot {action} document {document_id} in status {status}"
            + (f" (edit request {edit_request_status})" if edit_request_status else "")
        )
