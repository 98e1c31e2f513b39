"""
Numerical Settings

Every tunable constant of the kernel lives here as a frozen dataclass with a
documented default. Nothing in the kernel reads module-level mutable state:
settings are passed explicitly, so two threads may price with different
settings at the same time.

Defaults:

   Quadrature   tol = 1e-9, 500 subdivisions, u_max ∈ [50, 5000]
   FFT          N = 4096, η = 0.25, α = 1.5 (starting values, tuned per
                contract), N <= 65536, alias 1e-10
   Band         model prices within 1e-6·max(S, K) of the no-arbitrage
                band are clamped onto it, further out is an error
   Greek bumps  spot 0.1% (relative), vol 1% (relative),
                rate 1bp (absolute), time 1e-3 years (absolute)
   Root finder  bracket [1e-6, 5.0], tol = 1e-10, 200 iterations,
                at most 3 bracket expansions
"""

import math
import os
from dataclasses import dataclass, field, fields, replace
from typing import Dict, Mapping, Optional, Tuple

from pricing_kernel.backend.core.contracts import HestonParams
from pricing_kernel.backend.core.errors import InvalidParameterError


@dataclass(frozen=True)
class QuadratureSettings:
    """Adaptive quadrature of the Heston probability integrals."""

    tolerance: float = 1e-9         # absolute and relative target
    max_subdivisions: int = 500     # QUADPACK 'limit'
    min_upper_bound: float = 50.0   # floor of the truncation point u_max
    max_upper_bound: float = 5000.0
    band_tolerance: float = 1e-6    # relative to max(S, K)

    def validate(self) -> 'QuadratureSettings':
        if not 0 < self.tolerance < 1:
            raise InvalidParameterError(f"quadrature tolerance must be in (0, 1), got {self.tolerance}")
        if self.max_subdivisions < 1:
            raise InvalidParameterError(f"max_subdivisions must be >= 1, got {self.max_subdivisions}")
        if not 0 < self.min_upper_bound <= self.max_upper_bound:
            raise InvalidParameterError(
                f"need 0 < min_upper_bound <= max_upper_bound, "
                f"got {self.min_upper_bound}, {self.max_upper_bound}"
            )
        if self.band_tolerance < 0:
            raise InvalidParameterError(f"band_tolerance must be non-negative, got {self.band_tolerance}")
        return self


@dataclass(frozen=True)
class FFTSettings:
    """
    Carr-Madan grid.

    n:     number of grid points (power of two)
    eta:   spacing η of the transform variable v
    alpha: damping exponent α of the call price e^{αk}·C(k)

    The log-strike spacing follows from the Nyquist relation λ = 2π/(Nη).
    n, eta and alpha are starting values: the pricer lowers α until the
    damped moment E[S_T^{α+1}] is finite and moderate, shrinks η to keep
    the Simpson alias below alias_tolerance, and doubles n (up to max_n)
    until the grid reaches the truncation point of φ.
    """

    n: int = 4096
    eta: float = 0.25
    alpha: float = 1.5

    # Contracts outside this moneyness band, or shorter than this expiry,
    # get a finer grid. Longer than long_expiry halves η.
    moneyness_band: Tuple[float, float] = (0.7, 1.5)
    short_expiry: float = 0.1
    long_expiry: float = 2.0

    min_alpha: float = 0.05
    max_damping_cost: float = 9.2       # ln(1e4): peak integrand / S·e^{-qτ}
    alias_tolerance: float = 1e-10
    max_n: int = 65536
    band_tolerance: float = 1e-6        # relative to max(S, K)

    def validate(self) -> 'FFTSettings':
        for name in ('n', 'max_n'):
            value = getattr(self, name)
            if value < 16 or value & (value - 1):
                raise InvalidParameterError(f"FFT {name} must be a power of two >= 16, got {value}")
        if self.n > self.max_n:
            raise InvalidParameterError(f"FFT size {self.n} exceeds max_n {self.max_n}")
        if self.eta <= 0:
            raise InvalidParameterError(f"FFT eta must be positive, got {self.eta}")
        if not 0 < self.min_alpha <= self.alpha:
            raise InvalidParameterError(
                f"need 0 < min_alpha <= alpha, got {self.min_alpha}, {self.alpha}"
            )
        if not 0 < self.alias_tolerance < 1:
            raise InvalidParameterError(f"alias_tolerance must be in (0, 1), got {self.alias_tolerance}")
        if self.band_tolerance < 0:
            raise InvalidParameterError(f"band_tolerance must be non-negative, got {self.band_tolerance}")
        return self

    @property
    def log_strike_spacing(self) -> float:
        """λ = 2π/(Nη)"""
        return 2.0 * math.pi / (self.n * self.eta)

    @staticmethod
    def is_challenging(moneyness: float, expiry: float, params: HestonParams) -> bool:
        """
        Parameter sets where the default grid is known to struggle.

        Moneyness outside [0.5, 2], expiry under 0.15 with V₀ above 4%
        (20% vol), vol-of-vol above 1, or |ρ| above 0.9.
        """
        return (not 0.5 <= moneyness <= 2.0
                or (expiry < 0.15 and params.v0 > 0.04)
                or params.sigma > 1.0
                or abs(params.rho) > 0.9)

    def adapted_for(self, moneyness: float, expiry: float,
                    params: Optional[HestonParams] = None) -> 'FFTSettings':
        """
        Finer grid for deep ITM/OTM strikes, short expiries and challenging
        parameter sets; finer η for long expiries.

        Short expiries have a wide characteristic function and need more
        points; they also use milder damping, since e^{αk} magnifies the
        truncation error when the price is concentrated near the strike.
        Long expiries spread the integrated variance, so φ narrows and is
        sampled twice as densely.
        """
        low, high = self.moneyness_band
        settings = self
        challenging = params is not None and self.is_challenging(moneyness, expiry, params)
        if not low <= moneyness <= high or expiry < self.short_expiry or challenging:
            settings = replace(settings, n=max(settings.n, 8192))
        if expiry < self.short_expiry:
            settings = replace(settings, alpha=min(settings.alpha, 1.25))
        elif expiry > self.long_expiry:
            settings = replace(settings, eta=0.5 * settings.eta)
        return settings

    def fallbacks(self) -> Tuple['FFTSettings', ...]:
        """Grids tried in order when the primary grid fails."""
        return (
            replace(self, n=8192, alpha=1.0, eta=0.25),
            replace(self, n=2048, alpha=1.25, eta=0.5),
        )


@dataclass(frozen=True)
class GreekBumps:
    """
    Finite-difference step sizes.

    Too small amplifies integration noise, too large adds truncation bias;
    the defaults keep Heston Greeks within ~1e-4 of their references at the
    default quadrature tolerance.
    """

    spot: float = 1e-3        # relative: h = spot · S
    volatility: float = 1e-2  # relative: h = volatility · σ
    rate: float = 1e-4        # absolute
    time: float = 1e-3        # absolute, in years

    def validate(self) -> 'GreekBumps':
        for f in fields(self):
            value = getattr(self, f.name)
            if not value > 0:
                raise InvalidParameterError(f"{f.name} bump must be positive, got {value}")
        return self


@dataclass(frozen=True)
class SolverSettings:
    """Implied-volatility bracket and Brent iteration budget."""

    lower: float = 1e-6
    upper: float = 5.0
    tolerance: float = 1e-10
    max_iterations: int = 200
    max_expansions: int = 3

    def validate(self) -> 'SolverSettings':
        if not 0 < self.lower < self.upper:
            raise InvalidParameterError(f"need 0 < lower < upper, got [{self.lower}, {self.upper}]")
        if self.tolerance <= 0:
            raise InvalidParameterError(f"solver tolerance must be positive, got {self.tolerance}")
        if self.max_iterations < 1:
            raise InvalidParameterError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.max_expansions < 0:
            raise InvalidParameterError(f"max_expansions must be >= 0, got {self.max_expansions}")
        return self

    @property
    def bracket(self) -> Tuple[float, float]:
        return (self.lower, self.upper)


@dataclass(frozen=True)
class KernelSettings:
    quadrature: QuadratureSettings = field(default_factory=QuadratureSettings)
    fft: FFTSettings = field(default_factory=FFTSettings)
    bumps: GreekBumps = field(default_factory=GreekBumps)
    solver: SolverSettings = field(default_factory=SolverSettings)

    def validate(self) -> 'KernelSettings':
        self.quadrature.validate()
        self.fft.validate()
        self.bumps.validate()
        self.solver.validate()
        return self

    def to_dict(self) -> Dict[str, Dict[str, object]]:
        return {
            section: {f.name: getattr(getattr(self, section), f.name)
                      for f in fields(getattr(self, section))}
            for section in _SECTIONS
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Mapping[str, object]]) -> 'KernelSettings':
        """
        Build from nested mappings, e.g. {'fft': {'n': 8192}}.

        Missing sections and keys keep their defaults.
        """
        sections = {}
        for section, section_cls in _SECTIONS.items():
            overrides = dict(d.get(section, {}))
            known = {f.name for f in fields(section_cls)}
            unknown = set(overrides) - known
            if unknown:
                raise InvalidParameterError(f"Unknown {section} settings: {sorted(unknown)}")
            sections[section] = section_cls(**overrides)
        unknown_sections = set(d) - set(_SECTIONS)
        if unknown_sections:
            raise InvalidParameterError(f"Unknown settings sections: {sorted(unknown_sections)}")
        return cls(**sections).validate()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'KernelSettings':
        """
        Read overrides from PRICING_KERNEL_* environment variables.

            PRICING_KERNEL_FFT_N=8192
            PRICING_KERNEL_FFT_ALPHA=1.25
            PRICING_KERNEL_QUAD_TOLERANCE=1e-10
        """
        environ = os.environ if environ is None else environ
        overrides: Dict[str, Dict[str, object]] = {}
        for variable, (section, name, cast) in _ENV_VARIABLES.items():
            raw = environ.get(variable)
            if raw is None or raw == "":
                continue
            try:
                value = cast(raw)
            except ValueError as exc:
                raise InvalidParameterError(f"{variable}={raw!r} is not a valid {cast.__name__}") from exc
            overrides.setdefault(section, {})[name] = value
        return cls.from_dict(overrides)


_SECTIONS = {
    'quadrature': QuadratureSettings,
    'fft': FFTSettings,
    'bumps': GreekBumps,
    'solver': SolverSettings,
}

_ENV_VARIABLES = {
    'PRICING_KERNEL_FFT_N': ('fft', 'n', int),
    'PRICING_KERNEL_FFT_ETA': ('fft', 'eta', float),
    'PRICING_KERNEL_FFT_ALPHA': ('fft', 'alpha', float),
    'PRICING_KERNEL_QUAD_TOLERANCE': ('quadrature', 'tolerance', float),
    'PRICING_KERNEL_QUAD_SUBDIVISIONS': ('quadrature', 'max_subdivisions', int),
    'PRICING_KERNEL_SOLVER_TOLERANCE': ('solver', 'tolerance', float),
    'PRICING_KERNEL_SOLVER_MAX_ITERATIONS': ('solver', 'max_iterations', int),
}

DEFAULT_SETTINGS = KernelSettings()
