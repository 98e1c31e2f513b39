"""
Error Taxonomy for the Pricing Kernel

═══════════════════════════════════════════════════════════════════════════════
FAILURE KINDS
═══════════════════════════════════════════════════════════════════════════════

Every failure the kernel can report falls into one of four kinds:

   InvalidParameter          - out-of-range or non-finite inputs
   UnsupportedModelOrMethod  - e.g. FFT requested for Black-Scholes
   NumericalNonConvergence   - quadrature / root-finder / FFT grid failed
   DomainInfeasible          - market price unreachable by any parameter

Engines raise the exception classes below. The facade is the only place
that converts them into an ErrorOutcome carried by the PricingResult.

═══════════════════════════════════════════════════════════════════════════════
"""

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    """Tag of an ErrorOutcome."""

    NONE = "none"
    INVALID_PARAMETER = "invalid_parameter"
    UNSUPPORTED_MODEL_OR_METHOD = "unsupported_model_or_method"
    NUMERICAL_NON_CONVERGENCE = "numerical_non_convergence"
    DOMAIN_INFEASIBLE = "domain_infeasible"

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]

    @property
    def is_fatal(self) -> bool:
        """
        True when retrying with different numerical settings cannot help.

        Input errors and infeasible quotes are fatal for the request;
        a non-converged integral or root search may succeed with a larger
        budget or a different backend.
        """
        return self in (
            ErrorKind.INVALID_PARAMETER,
            ErrorKind.UNSUPPORTED_MODEL_OR_METHOD,
            ErrorKind.DOMAIN_INFEASIBLE,
        )


_DESCRIPTIONS = {
    ErrorKind.NONE: "No error",
    ErrorKind.INVALID_PARAMETER: "Invalid parameter",
    ErrorKind.UNSUPPORTED_MODEL_OR_METHOD: "Unsupported model or numerical method",
    ErrorKind.NUMERICAL_NON_CONVERGENCE: "Numerical method failed to converge",
    ErrorKind.DOMAIN_INFEASIBLE: "Market price is unreachable by the model",
}


# ═══════════════════════════════════════════════════════════════════════════════
# EXCEPTIONS
# ═══════════════════════════════════════════════════════════════════════════════

class PricingError(Exception):
    """Base class for all kernel failures."""

    kind = ErrorKind.NUMERICAL_NON_CONVERGENCE


class InvalidParameterError(PricingError, ValueError):
    """Out-of-range, non-finite or mismatched input."""

    kind = ErrorKind.INVALID_PARAMETER


class UnsupportedModelOrMethodError(PricingError):
    """Model/method combination the kernel does not implement."""

    kind = ErrorKind.UNSUPPORTED_MODEL_OR_METHOD


class NumericalNonConvergenceError(PricingError):
    """Quadrature, FFT grid or root search did not meet its tolerance."""

    kind = ErrorKind.NUMERICAL_NON_CONVERGENCE


class DomainInfeasibleError(PricingError):
    """Requested market price cannot be produced by any parameter."""

    kind = ErrorKind.DOMAIN_INFEASIBLE


class RootNotBracketedError(DomainInfeasibleError):
    """The root-finder's bracket has no sign change."""


class VolatilityNotFoundError(DomainInfeasibleError):
    """No volatility in the (expanded) search bracket reproduces the price."""


# ═══════════════════════════════════════════════════════════════════════════════
# OUTCOME VALUE
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ErrorOutcome:
    """Tagged failure value returned by the facade. Produced fresh per call."""

    kind: ErrorKind = ErrorKind.NONE
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.kind is ErrorKind.NONE

    @classmethod
    def success(cls) -> 'ErrorOutcome':
        return cls()

    @classmethod
    def from_exception(cls, exc: Exception) -> 'ErrorOutcome':
        if isinstance(exc, PricingError):
            return cls(kind=exc.kind, message=str(exc))
        if isinstance(exc, ArithmeticError):
            return cls(
                kind=ErrorKind.NUMERICAL_NON_CONVERGENCE,
                message=f"{type(exc).__name__}: {exc}",
            )
        raise TypeError(f"Cannot map {type(exc).__name__} to an ErrorOutcome") from exc

    def to_dict(self) -> dict:
        return {
            'kind': self.kind.value,
            'description': self.kind.description,
            'message': self.message,
        }
