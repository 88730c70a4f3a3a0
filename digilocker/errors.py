"""Exception taxonomy for the credential service."""


class DigiLockerError(Exception):
    """Base class for all service errors."""
    category = "internal"

    def __init__(self, message: str, error_code: str = "DigiLockerError"):
        self.message = message
        self.error_code = error_code
        super().__init__(f"[{error_code}] {message}")


# ==================== CATEGORIES ====================

class ValidationError(DigiLockerError):
    """Missing or malformed input. No state was changed."""
    category = "validation"

    def __init__(self, message: str, error_code: str = "ValidationError"):
        super().__init__(message, error_code)


class NotFoundError(DigiLockerError):
    """Unknown request, nonce or reference. No state was changed."""
    category = "not_found"

    def __init__(self, message: str, error_code: str = "NotFound"):
        super().__init__(message, error_code)


class ConflictError(DigiLockerError):
    """Operation incompatible with the current state. No state was changed."""
    category = "conflict"

    def __init__(self, message: str, error_code: str = "Conflict"):
        super().__init__(message, error_code)


class OwnershipError(DigiLockerError):
    """The caller could not prove control of the DID."""
    category = "ownership"

    def __init__(self, message: str, error_code: str = "OwnershipError"):
        super().__init__(message, error_code)


class ExternalServiceError(DigiLockerError):
    """Blob store or ledger unreachable, failed or timed out."""
    category = "external"

    def __init__(self, message: str, error_code: str = "ExternalServiceError"):
        super().__init__(message, error_code)


class CryptoError(DigiLockerError):
    """Signature scheme primitive failed."""
    category = "crypto"

    def __init__(self, message: str, error_code: str = "CryptoError"):
        super().__init__(message, error_code)


# ==================== NOT FOUND ====================

class RequestNotFoundError(NotFoundError):
    def __init__(self, request_id: str):
        super().__init__(f"Request not found: {request_id}", "RequestNotFound")
        self.request_id = request_id


class NonceNotFoundError(NotFoundError):
    def __init__(self, nonce_id: str):
        super().__init__(f"Nonce not found: {nonce_id}", "NonceNotFound")
        self.nonce_id = nonce_id


class CredentialNotFoundError(NotFoundError):
    def __init__(self, ref: str):
        super().__init__(f"No stored object for reference: {ref}", "CredentialNotFound")
        self.ref = ref


# ==================== CONFLICT ====================

class InvalidStateError(ConflictError):
    def __init__(self, message: str):
        super().__init__(message, "InvalidState")


class NonceRequestMismatchError(ConflictError):
    def __init__(self, message: str = "Nonce does not match request"):
        super().__init__(message, "NonceRequestMismatch")


class NonceExpiredError(ConflictError):
    def __init__(self, message: str = "Nonce has expired"):
        super().__init__(message, "NonceExpired")


class NonceAlreadyUsedError(ConflictError):
    def __init__(self, message: str = "Nonce has already been used"):
        super().__init__(message, "NonceAlreadyUsed")


class NonceSupersededError(ConflictError):
    def __init__(self, message: str = "Nonce was superseded by a newer challenge"):
        super().__init__(message, "NonceSuperseded")


# ==================== OWNERSHIP ====================

class OwnershipMismatchError(OwnershipError):
    def __init__(self, message: str = "Signature does not match DID owner"):
        super().__init__(message, "OwnershipMismatch")


class InvalidSignatureError(OwnershipError):
    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message, "InvalidSignature")


# ==================== VALIDATION ====================

class MissingRequiredFieldError(ValidationError):
    def __init__(self, fields):
        self.fields = list(fields)
        super().__init__(
            f"Missing required fields: {', '.join(self.fields)}", "MissingRequiredField"
        )


class UnknownCredentialTypeError(ValidationError):
    def __init__(self, credential_type):
        super().__init__(f"Unsupported credential type: {credential_type}", "UnknownCredentialType")


class UnknownDisclosedFieldError(ValidationError):
    def __init__(self, fields):
        self.fields = list(fields)
        super().__init__(
            f"Unknown disclosed fields: {', '.join(self.fields)}", "UnknownDisclosedField"
        )


class NoDisclosedFieldsError(ValidationError):
    def __init__(self, message: str = "At least one known field must be disclosed"):
        super().__init__(message, "NoDisclosedFields")


class MissingOriginalSignatureError(ValidationError):
    def __init__(self, message: str = "Credential does not carry a BBS+ signature"):
        super().__init__(message, "MissingOriginalSignature")


class MalformedPresentationError(ValidationError):
    def __init__(self, message: str):
        super().__init__(message, "MalformedPresentation")


# ==================== CRYPTO ====================

class SigningFailureError(CryptoError):
    def __init__(self, message: str):
        super().__init__(message, "SigningFailure")


class DerivationFailureError(CryptoError):
    def __init__(self, message: str):
        super().__init__(message, "DerivationFailure")


# ==================== EXTERNAL ====================

class BlobStoreError(ExternalServiceError):
    def __init__(self, message: str):
        super().__init__(message, "BlobStoreFailure")


class LedgerError(ExternalServiceError):
    def __init__(self, message: str):
        super().__init__(message, "LedgerFailure")
