"""
Typed Exception Hierarchy for the Voucher Kernel.

===============================================================================
TYPED EXCEPTIONS
===============================================================================

Callers of the numbering and posting core must react to failures precisely:
a ``SequenceExhaustedError`` needs an operator to extend or replace a series,
while an ``UnbalancedEntryError`` only needs the caller to fix its entries.

Every exception therefore:
  1. Has its own class (catch by type, not by message)
  2. Has a ``code`` class attribute (machine-readable, API-safe)
  3. Carries structured data as attributes (not just a message string)

    try:
        engine.post_document(document_id)
    except UnbalancedEntryError as e:
        return {"error": e.code, "debits": e.debits, "credits": e.credits}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    VoucherKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidAmountError
    |   +-- InvalidRateError
    |   +-- InvalidFormatError
    |   +-- InvalidPrefixError
    |   +-- InvalidSeriesConfigError
    |   +-- InvalidLedgerEntryError
    |   +-- InvalidDocumentDateError
    |   +-- MissingJurisdictionError
    |
    +-- NumberingError
    |   +-- SeriesNotFoundError
    |   +-- SequenceExhaustedError
    |   +-- ComplianceViolationError
    |   +-- SeriesInUseError
    |
    +-- DocumentError
    |   +-- DocumentNotFoundError
    |   +-- EmptyDocumentError
    |   +-- MissingDocumentNumberError
    |   +-- InvalidStatusTransitionError
    |
    +-- PostingError
    |   +-- UnbalancedEntryError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError
            +-- ImmutableDocumentError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                       | When Raised
--------------|----------------------------|------------------------------------------
Validation    | INVALID_AMOUNT             | Negative, non-finite or non-numeric amount
              | INVALID_RATE               | Tax rate outside 0..100
              | INVALID_FORMAT             | Format lacks PREFIX/SEQUENCE or can exceed limit
              | INVALID_PREFIX             | Prefix empty, too long, or not A-Z0-9
              | INVALID_SERIES_CONFIG      | Bad bounds, lengths, cadence or field
              | INVALID_LEDGER_ENTRY       | Entry has both or neither side, or negative
              | INVALID_DOCUMENT_DATE      | Document dated after today
              | MISSING_JURISDICTION       | Jurisdiction absent under the reject policy
--------------|----------------------------|------------------------------------------
Numbering     | SERIES_NOT_FOUND           | No explicit or default active series
              | SEQUENCE_EXHAUSTED         | Next sequence beyond end_number
              | COMPLIANCE_VIOLATION       | Rendered number too long / bad characters
              | SERIES_IN_USE              | Deleting a series that produced numbers
--------------|----------------------------|------------------------------------------
Document      | DOCUMENT_NOT_FOUND         | Document ID unknown for the tenant
              | EMPTY_DOCUMENT             | Totals requested for zero line items
              | MISSING_DOCUMENT_NUMBER    | Posting a document without a number
              | INVALID_STATUS_TRANSITION  | e.g. cancelled -> posted
--------------|----------------------------|------------------------------------------
Posting       | UNBALANCED_ENTRY           | Sum of debits != sum of credits
--------------|----------------------------|------------------------------------------
Immutability  | IMMUTABILITY_VIOLATION     | Modifying an append-only record
              | IMMUTABLE_DOCUMENT         | Modifying a posted document

===============================================================================
RECOVERY
===============================================================================

All of these are local, recoverable conditions.  Only SequenceExhaustedError
needs operator intervention (a configuration limit was reached), the rest
carry enough detail for the caller to correct its input and retry.
"""


class VoucherKernelError(Exception):
    """
    Base exception for all voucher kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "VOUCHER_KERNEL_ERROR"


# Validation exceptions


class ValidationError(VoucherKernelError):
    """Input or configuration rejected before any persistence."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(ValidationError):
    """Amount is negative, non-finite or not a number."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = str(value)
        self.reason = reason
        super().__init__(f"Invalid {field} {value!r}: {reason}")


class InvalidRateError(ValidationError):
    """Tax rate is outside the 0-100 percent range."""

    code: str = "INVALID_RATE"

    def __init__(self, value: object, reason: str = "rate must be between 0 and 100"):
        self.value = str(value)
        self.reason = reason
        super().__init__(f"Invalid tax rate {value!r}: {reason}")


class InvalidFormatError(ValidationError):
    """Numbering format string is malformed or can exceed the length limit."""

    code: str = "INVALID_FORMAT"

    def __init__(self, format: str, reason: str):
        self.format = format
        self.reason = reason
        super().__init__(f"Invalid numbering format '{format}': {reason}")


class InvalidPrefixError(ValidationError):
    """Series prefix is empty, too long or not uppercase alphanumeric."""

    code: str = "INVALID_PREFIX"

    def __init__(self, prefix: str | None, reason: str):
        self.prefix = prefix
        self.reason = reason
        super().__init__(f"Invalid series prefix {prefix!r}: {reason}")


class InvalidSeriesConfigError(ValidationError):
    """A numbering series field is missing or out of range."""

    code: str = "INVALID_SERIES_CONFIG"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid series configuration for '{field}': {reason}")


class InvalidLedgerEntryError(ValidationError):
    """Ledger entry does not carry exactly one non-negative side."""

    code: str = "INVALID_LEDGER_ENTRY"

    def __init__(self, ledger_reference: str, reason: str):
        self.ledger_reference = ledger_reference
        self.reason = reason
        super().__init__(f"Invalid ledger entry for '{ledger_reference}': {reason}")


class InvalidDocumentDateError(ValidationError):
    """Document date lies after the current date."""

    code: str = "INVALID_DOCUMENT_DATE"

    def __init__(self, document_date: str, today: str):
        self.document_date = document_date
        self.today = today
        super().__init__(f"Document date {document_date} is in the future (today is {today})")


class MissingJurisdictionError(ValidationError):
    """Origin or destination jurisdiction is absent and the policy rejects it."""

    code: str = "MISSING_JURISDICTION"

    def __init__(self, side: str):
        self.side = side
        super().__init__(f"Missing {side} jurisdiction")


# Numbering exceptions


class NumberingError(VoucherKernelError):
    """Base exception for numbering series errors."""

    code: str = "NUMBERING_ERROR"


class SeriesNotFoundError(NumberingError):
    """No matching active numbering series."""

    code: str = "SERIES_NOT_FOUND"

    def __init__(
        self,
        tenant_id: str,
        document_type: str | None = None,
        series_id: str | None = None,
    ):
        self.tenant_id = tenant_id
        self.document_type = document_type
        self.series_id = series_id
        if series_id is not None:
            msg = f"Numbering series {series_id} not found for tenant {tenant_id}"
        else:
            msg = (
                f"No active default numbering series for tenant {tenant_id}, "
                f"document type {document_type}"
            )
        super().__init__(msg)


class SequenceExhaustedError(NumberingError):
    """
    Series has reached its configured end_number.

    Needs operator action: extend end_number or switch to a new series.
    """

    code: str = "SEQUENCE_EXHAUSTED"

    def __init__(self, series_id: str, end_number: int, next_sequence: int):
        self.series_id = series_id
        self.end_number = end_number
        self.next_sequence = next_sequence
        super().__init__(
            f"Numbering series {series_id} exhausted: next sequence "
            f"{next_sequence} exceeds end number {end_number}"
        )


class ComplianceViolationError(NumberingError):
    """Rendered document number breaks the length or character rules."""

    code: str = "COMPLIANCE_VIOLATION"

    def __init__(self, document_number: str, reason: str, series_id: str | None = None):
        self.document_number = document_number
        self.reason = reason
        self.series_id = series_id
        super().__init__(
            f"Document number '{document_number}' is not compliant: {reason}"
        )


class SeriesInUseError(NumberingError):
    """Series has produced numbers and can only be deactivated."""

    code: str = "SERIES_IN_USE"

    def __init__(self, series_id: str, history_count: int):
        self.series_id = series_id
        self.history_count = history_count
        super().__init__(
            f"Numbering series {series_id} has issued {history_count} number(s) "
            "and cannot be deleted; deactivate it instead"
        )


# Document exceptions


class DocumentError(VoucherKernelError):
    """Base exception for document lifecycle errors."""

    code: str = "DOCUMENT_ERROR"


class DocumentNotFoundError(DocumentError):
    """Document with given ID was not found for the tenant."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str, tenant_id: str | None = None):
        self.document_id = document_id
        self.tenant_id = tenant_id
        super().__init__(f"Document not found: {document_id}")


class EmptyDocumentError(DocumentError):
    """Totals were requested for a document with no line items."""

    code: str = "EMPTY_DOCUMENT"

    def __init__(self, message: str = "Document must contain at least one line item"):
        super().__init__(message)


class MissingDocumentNumberError(DocumentError):
    """Document cannot be posted before a number is allocated."""

    code: str = "MISSING_DOCUMENT_NUMBER"

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document {document_id} has no document number")


class InvalidStatusTransitionError(DocumentError):
    """Requested lifecycle transition is not allowed."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, document_id: str, from_status: str, to_status: str):
        self.document_id = document_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Document {document_id} cannot move from {from_status} to {to_status}"
        )


# Posting exceptions


class PostingError(VoucherKernelError):
    """Base exception for posting errors."""

    code: str = "POSTING_ERROR"


class UnbalancedEntryError(PostingError):
    """Ledger entry debits do not equal credits."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(self, document_id: str, debits: str, credits: str, difference: str):
        self.document_id = document_id
        self.debits = debits
        self.credits = credits
        self.difference = difference
        super().__init__(
            f"Unbalanced entries on document {document_id}: "
            f"debits={debits}, credits={credits}, difference={difference}"
        )


# Immutability exceptions


class ImmutabilityError(VoucherKernelError):
    """Base exception for immutability errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Numbering history is append-only from creation; documents and their
    lines and entries freeze when posted.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class ImmutableDocumentError(ImmutabilityViolationError):
    """Mutation attempted on a posted document."""

    code: str = "IMMUTABLE_DOCUMENT"

    def __init__(self, document_id: str, reason: str = "document is posted"):
        self.document_id = document_id
        super().__init__("Document", document_id, reason)
