from __future__ import annotations


class ExtoError(Exception):
    """Base error for exto."""


class InvalidInputError(ExtoError):
    """Caller supplied a malformed identifier or payload."""


class AuthError(ExtoError):
    """Request could not be bound to an active user and organization."""


class NotFoundError(ExtoError):
    """Requested record does not exist in the resolved namespace."""


class OrganizationNotFoundError(NotFoundError):
    """Organization missing or inactive."""


class CategoryNotFoundError(NotFoundError):
    """Category definition missing."""


class CategoryDataNotFoundError(NotFoundError):
    """Category data record missing from the tenant collection."""


class ScanHistoryNotFoundError(NotFoundError):
    """Scan history entry missing from the tenant namespace."""


class BatchNotFoundError(NotFoundError):
    """Batch missing from the tenant namespace."""


class SubscriptionNotFoundError(NotFoundError):
    """No current subscription for the organization."""


class ConflictError(ExtoError):
    """Write rejected because a unique record already exists."""


class IdentityExistsError(ConflictError):
    """An identity with this email already exists."""


class OrganizationExistsError(ConflictError):
    """An organization with this name already exists."""


class UserExistsError(ConflictError):
    """A user with this email already exists in the organization."""


class CategoryExistsError(ConflictError):
    """A category with this slug already exists."""


class ProviderConfigError(ExtoError):
    """Missing or invalid provider configuration."""


class ExtractionError(ExtoError):
    """Extraction model request failed."""


class ExtractionParseError(ExtractionError):
    """Extraction model reply was not valid JSON after cleanup."""


class PaymentProviderError(ExtoError):
    """Payment provider request failed."""


class FilePathExhaustedError(ExtoError):
    """No unique upload path could be allocated."""


class DatabaseError(ExtoError):
    """Database layer failure."""
