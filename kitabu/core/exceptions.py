WAIVER_REASON = "waived by administrator"

class KitabuError(Exception): pass

class DatabaseInsertError(KitabuError): pass

# Validation: rejected before any state is read or written
class ValidationError(KitabuError): pass

class InvalidTrackingCodeError(ValidationError): pass

class EmptyGroupError(ValidationError): pass

class InvalidGroupMemberError(ValidationError): pass

class InvalidDueDateError(ValidationError): pass

class InvalidAmountError(ValidationError): pass

# Preconditions: entity exists but is in the wrong state
class PreconditionError(KitabuError): pass

class CopyUnavailableError(PreconditionError): pass

class AlreadyBorrowedError(CopyUnavailableError): pass

class NotBorrowedError(PreconditionError): pass

class CopyNotLostError(PreconditionError): pass

class LoanNotActiveError(PreconditionError): pass

class TrackingCodeMismatchError(PreconditionError): pass

class FineNotPayableError(PreconditionError): pass

class CaseAlreadyResolvedError(PreconditionError): pass

class CaseNotResolvedError(PreconditionError): pass

# Not found: surfaced to the operator for correction
class NotFoundError(KitabuError): pass

class UnknownTrackingCodeError(NotFoundError): pass

class CopyNotFoundError(NotFoundError): pass

class LoanNotFoundError(NotFoundError): pass

class BorrowerNotFoundError(NotFoundError): pass

class FineNotFoundError(NotFoundError): pass

class TheftCaseNotFoundError(NotFoundError): pass

# Soft: the caller may retry with allow_inactive=True
class BorrowerInactiveError(KitabuError): pass
