# vegasgen/physics/cuts.py
from dataclasses import dataclass

import numpy as np


def pT(p):
    # p = (E, px, py, pz)
    return np.sqrt(p[1]**2 + p[2]**2)

def eta(p):
    E, px, py, pz = p
    return 0.5 * np.log((E + pz) / (E - pz + 1e-12))


@dataclass
class CutSet:
    """
    Cuts for q qbar -> Z g  (Z + 1 jet)

    Fiducial: jet pT / |eta|, optional Z pT / |eta|.
    Veto: an event is vetoed if any final-state particle with
    pT > veto_pt_min lands in veto_eta_min < |eta| < veto_eta_max
    (empty region by default).
    """
    jet_pt_min: float = 20.0
    jet_eta_max: float = 5.0
    z_pt_min: float = 0.0
    z_eta_max: float = np.inf
    veto_eta_min: float = np.inf
    veto_eta_max: float = np.inf
    veto_pt_min: float = 0.0

    def fiducial(self, p_all) -> bool:
        """
        Expected event layout (like MG5 standalone):
          p_all shape: (4,4)
            p_all[0] = beam1
            p_all[1] = beam2
            p_all[2] = Z
            p_all[3] = g (jet)
        """
        p_all = np.asarray(p_all)
        if p_all.shape != (4, 4):
            return False
        if not np.all(np.isfinite(p_all)):
            return False

        Z = p_all[2]
        g = p_all[3]

        # basic positivity
        if Z[0] <= 0 or g[0] <= 0:
            return False

        # ---- jet ----
        if pT(g) < self.jet_pt_min:
            return False
        if abs(eta(g)) > self.jet_eta_max:
            return False

        # ---- Z (off by default) ----
        if pT(Z) < self.z_pt_min:
            return False
        if abs(eta(Z)) > self.z_eta_max:
            return False

        return True

    def veto(self, p_all) -> bool:
        """True if the event survives the veto."""
        for p in np.asarray(p_all)[2:]:
            aeta = abs(eta(p))
            if self.veto_eta_min < aeta < self.veto_eta_max and pT(p) > self.veto_pt_min:
                return False
        return True


DEFAULT_CUTS = CutSet()


def passes_cuts(p_all, cuts: CutSet = DEFAULT_CUTS):
    """Fiducial and veto cuts together. Returns True if the event passes."""
    return cuts.fiducial(p_all) and cuts.veto(p_all)
