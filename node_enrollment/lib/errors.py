"""Exception hierarchy for enrollment operations."""


class EnrollmentError(Exception):
    """Base class for every error raised while obtaining node crypto."""


class EnrollmentValidationError(EnrollmentError, ValueError):
    """Enrollment request is missing a required field."""


class CAConnectionError(EnrollmentError):
    """CA could not be reached, or rejected the enrollment exchange."""


class CAChainError(EnrollmentError, ValueError):
    """CA returned a certificate chain that cannot be used."""


class KeystoreError(EnrollmentError):
    """Private key could not be generated, stored or read back."""


class HSMConfigError(EnrollmentError):
    """HSM configuration is missing or cannot be parsed."""


class OrchestrationError(EnrollmentError):
    """Call against the cluster API failed."""


class NotFoundError(OrchestrationError):
    """Requested cluster object does not exist."""


class JobError(EnrollmentError):
    """Enrollment job did not start, did not finish, or finished unsuccessfully."""
