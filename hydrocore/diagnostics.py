"""Conservation checks and mass reports."""

from dataclasses import dataclass, field


@dataclass
class MassBalance:
    """Tracks cumulative boundary fluxes for conservation checks [mol]."""

    initial: float = 0.0
    cumulative_inflow: float = 0.0
    cumulative_outflow: float = 0.0

    def record(self, outward_flux: float, dt: float) -> None:
        """Accumulate a net outward flux [mol/s] over dt [s]."""
        if outward_flux >= 0:
            self.cumulative_outflow += outward_flux * dt
        else:
            self.cumulative_inflow -= outward_flux * dt

    def expected(self) -> float:
        """Expected total from the initial amount and fluxes."""
        return self.initial + self.cumulative_inflow - self.cumulative_outflow

    def check(self, actual: float, rtol: float = 1e-6, atol: float = 1e-10) -> float:
        """Check conservation and return the relative error.

        Raises:
            AssertionError: If the balance is violated beyond tolerance
        """
        expected = self.expected()
        error = abs(actual - expected)
        tol = atol + rtol * abs(expected)

        if error > tol:
            raise AssertionError(
                f"Mass conservation violated!\n"
                f"  Expected: {expected:.10e} mol\n"
                f"  Actual:   {actual:.10e} mol\n"
                f"  Error:    {error:.6e} (tolerance: {tol:.6e})\n"
                f"  Inflow:   {self.cumulative_inflow:.6e}\n"
                f"  Outflow:  {self.cumulative_outflow:.6e}"
            )

        return error / max(abs(expected), 1e-300)


@dataclass
class SoluteMassReport:
    """Per-component solute mass in each domain [mol].

    Attributes:
        time: Simulation time of the report [s]
        component_names: Aqueous component names
        subsurface: Mass per component in the volumetric domain
        surface: Mass per component on the surface manifold
    """

    time: float
    component_names: tuple[str, ...]
    subsurface: list[float] = field(default_factory=list)
    surface: list[float] = field(default_factory=list)

    @property
    def totals(self) -> list[float]:
        """Subsurface + surface per component."""
        return [a + b for a, b in zip(self.subsurface, self.surface)]

    def lines(self) -> list[str]:
        """One formatted line per component."""
        return [
            f"{name}: subsurface {sub:.6e} mol, surface {surf:.6e} mol, total {sub + surf:.6e} mol"
            for name, sub, surf in zip(self.component_names, self.subsurface, self.surface)
        ]


def check_conservation(
    initial: float,
    final: float,
    fluxes: dict[str, float] | None = None,
    rtol: float = 1e-10,
    atol: float = 1e-14,
) -> None:
    """Check mass conservation: final == initial - sum(fluxes).

    Args:
        initial: Initial total mass
        final: Final total mass
        fluxes: Dict of flux name -> value (positive = loss)
        rtol: Relative tolerance
        atol: Absolute tolerance

    Raises:
        AssertionError: If conservation violated
    """
    fluxes = fluxes or {}
    expected = initial - sum(fluxes.values())
    diff = abs(final - expected)
    tol = atol + rtol * abs(expected)

    if diff > tol:
        flux_str = ", ".join(f"{k}={v:.6e}" for k, v in fluxes.items())
        raise AssertionError(
            f"Mass not conserved!\n"
            f"  Initial: {initial:.10e}\n"
            f"  Final:   {final:.10e}\n"
            f"  Expected: {expected:.10e}\n"
            f"  Fluxes: {flux_str}\n"
            f"  Difference: {diff:.10e} (tolerance: {tol:.10e})"
        )
