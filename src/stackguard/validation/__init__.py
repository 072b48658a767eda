"""Pre-deployment validation and the security audit."""

from .context import ValidationContext
from .suite import run_security_audit, run_validation, validation_document

__all__ = ["ValidationContext", "run_validation", "run_security_audit", "validation_document"]
