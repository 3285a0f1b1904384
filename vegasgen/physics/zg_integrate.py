# vegasgen/physics/zg_integrate.py
import numpy as np

from vegasgen.integrator.config import VegasConfig
from vegasgen.integrator.controller import integrate
from vegasgen.integrator.dispatch import evaluate_checked
from vegasgen.integrator.validity import PhysicsIntegrand, ValidityRecord
from vegasgen.physics.cuts import DEFAULT_CUTS, CutSet
from vegasgen.physics.zg_me import me2_lo
from vegasgen.physics.zg_phase_space import MZ_DEFAULT, unit_volume_zg, zg_from_unit


class ZGIntegrand(PhysicsIntegrand):
    """
    q qbar -> Z g on the unit square (u0 -> cos(theta), u1 -> phi).

    weight = |M|^2 * dPhi2/dOmega * 4pi, so the integral over [0,1)^2 is
    I = int dPhi2 |M|^2 and sigma_hat = I / flux with flux = 2 s.
    amplitude defaults to the analytic LO shape; pass an AmplitudeContext
    to use the MadGraph library.
    """

    def __init__(self, Ecm: float, mZ: float = MZ_DEFAULT, cuts: CutSet = DEFAULT_CUTS, amplitude=None):
        self.Ecm = float(Ecm)
        self.mZ = float(mZ)
        self.cuts = cuts
        self.volume = unit_volume_zg(self.Ecm, self.mZ)
        if amplitude is None:
            amplitude = lambda p_all: me2_lo(p_all, mZ=self.mZ)

        super().__init__(
            dim=2,
            builder=lambda u: zg_from_unit(u, self.Ecm, mZ=self.mZ),
            amplitude=amplitude,
            fiducial=cuts.fiducial,
            veto=cuts.veto,
            jacobian=lambda p_all: self.volume,
        )

    @property
    def flux(self) -> float:
        return 2.0 * self.Ecm * self.Ecm


def integrate_zg_uniform(integrand: ZGIntegrand, n: int, seed: int = 0):
    """
    Flat sampling on the unit square with rejection for cuts (reject = weight 0).
    Returns:
      I, dI, sigma_hat, dsigma_hat, acceptance
    """
    rng = np.random.default_rng(seed)

    # We do a "per-throw" estimator including zeros to keep unbiased with cuts:
    # contrib_i = w_i if valid else 0
    contrib = np.zeros(n, dtype=np.float64)
    kept = 0
    for i in range(n):
        aux = ValidityRecord(rng=rng)
        w = evaluate_checked(integrand, rng.random(2), aux)
        if not aux.valid():
            continue
        contrib[i] = w
        kept += 1

    I = contrib.mean()
    dI = contrib.std(ddof=1) / np.sqrt(n) if n > 1 else 0.0
    flux = integrand.flux
    return I, dI, I / flux, dI / flux, kept / n


def integrate_zg_vegas(integrand: ZGIntegrand, config: VegasConfig = None):
    """
    Adaptive integration of the same weight.
    Returns:
      result (IntegrationResult), controller, sigma_hat, dsigma_hat
    """
    result, ctl = integrate(integrand, config)
    flux = integrand.flux
    return result, ctl, result.integral / flux, result.error / flux
