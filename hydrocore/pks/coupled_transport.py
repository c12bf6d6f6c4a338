"""
Surface/subsurface solute transport coupler.

Two SoluteTransport children: the one on the "domain" (volumetric) mesh
and one on the surface manifold. Each step:

    1. the volumetric PK computes the solute exchange on the surface
       cells from t_old values (upwinded by the water flux direction);
    2. children advance in declared order, stopping at the first failure;
    3. per-component masses in both domains are reported.

Since the volumetric side loses exactly what the manifold side gains,
total solute mass is conserved by the exchange.
"""

from hydrocore.diagnostics import SoluteMassReport
from hydrocore.errors import ConfigurationError
from hydrocore.fields.base import get_key
from hydrocore.fields.state import State
from hydrocore.params.schema import CoupledTransportParams
from hydrocore.pks.base import PKBase
from hydrocore.pks.mpc import WeakMPC
from hydrocore.pks.protocol import StepResult
from hydrocore.pks.transport import ExchangeSide, SoluteTransport


class CoupledTransport(WeakMPC):
    """Weak coupler of subsurface and surface transport."""

    def __init__(self, params: CoupledTransportParams, sub_pks: list[PKBase], logger=None):
        super().__init__(params, sub_pks, logger)
        if len(self.sub_pks) != 2:
            raise ConfigurationError(
                f"CoupledTransport '{self.name}' needs exactly 2 children, got {len(self.sub_pks)}"
            )
        subsurface = [pk for pk in self.sub_pks if pk.domain == params.subsurface_domain]
        surface = [pk for pk in self.sub_pks if pk.domain != params.subsurface_domain]
        if len(subsurface) != 1 or len(surface) != 1:
            raise ConfigurationError(
                f"CoupledTransport '{self.name}': expected one child on '{params.subsurface_domain}' "
                f"and one elsewhere, got domains {[pk.domain for pk in self.sub_pks]}"
            )
        self.subsurface_pk = subsurface[0]
        self.surface_pk = surface[0]
        for pk in (self.subsurface_pk, self.surface_pk):
            if not isinstance(pk, SoluteTransport):
                raise ConfigurationError(
                    f"CoupledTransport '{self.name}': child '{pk.name}' is not a transport PK"
                )
        self.exchange_key = params.exchange_key or get_key(self.surface_pk.domain, "solute_exchange_flux")
        self.last_report: SoluteMassReport | None = None

    def setup(self, state: State) -> None:
        self.num_aqueous_components()
        super().setup(state)
        surface_mesh = state.get_mesh(self.surface_pk.domain)
        self.surface_pk.enable_exchange(state, self.exchange_key, ExchangeSide.MANIFOLD)
        self.subsurface_pk.enable_exchange(state, self.exchange_key, ExchangeSide.VOLUMETRIC, surface_mesh)

    def initialize(self, state: State) -> None:
        self.num_aqueous_components()
        super().initialize(state)

    def num_aqueous_components(self) -> int:
        """Shared component count.

        Raises:
            ConfigurationError: If the children disagree
        """
        n_sub = self.subsurface_pk.num_aqueous_components
        n_surf = self.surface_pk.num_aqueous_components
        if n_sub != n_surf:
            raise ConfigurationError(
                f"CoupledTransport '{self.name}': {n_sub} subsurface components vs {n_surf} surface components"
            )
        return n_sub

    def get_dt(self) -> float:
        surf_dt = self.surface_pk.get_dt()
        subsurf_dt = self.subsurface_pk.get_dt()
        self.logger.debug("surface transport dt = %g, subsurface transport dt = %g", surf_dt, subsurf_dt)
        return min(surf_dt, subsurf_dt)

    def advance_(self, t_old: float, t_new: float) -> StepResult:
        self.subsurface_pk.update_exchange_flux(self.surface_pk.key)
        result = super().advance_(t_old, t_new)
        if result.success:
            self.last_report = self.mass_report(t_new)
            for line in self.last_report.lines():
                self.logger.info(line)
        return result

    def mass_report(self, time: float) -> SoluteMassReport:
        """Solute mass per component in each domain."""
        return SoluteMassReport(
            time=time,
            component_names=tuple(self.subsurface_pk.component_names),
            subsurface=self.subsurface_pk.solute_masses(),
            surface=self.surface_pk.solute_masses(),
        )
