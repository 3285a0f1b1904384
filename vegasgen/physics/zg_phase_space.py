# vegasgen/physics/zg_phase_space.py
import numpy as np

MZ_DEFAULT = 91.1876
TWOPI = 2.0 * np.pi


def build_event_zg(Ecm: float, costh: float, phi: float, mZ: float = MZ_DEFAULT):
    """
    Partonic CM frame: q qbar -> Z g

    Returns (ok, p_all) with p_all shape (4,4):
      [0]=beam1, [1]=beam2, [2]=Z, [3]=g
    and columns [E, px, py, pz]. Below threshold or for |costh| > 1
    the point is kinematically impossible: (False, None).
    """
    s = Ecm * Ecm
    if s <= mZ * mZ or abs(costh) > 1.0:
        return False, None

    # Incoming (massless), along z
    p1 = np.array([Ecm/2.0, 0.0, 0.0, +Ecm/2.0], dtype=np.float64)
    p2 = np.array([Ecm/2.0, 0.0, 0.0, -Ecm/2.0], dtype=np.float64)

    # 2-body momentum magnitude for masses (mZ, 0)
    p = (s - mZ*mZ) / (2.0 * Ecm)

    sinth = np.sqrt(max(0.0, 1.0 - costh*costh))
    px = p * sinth * np.cos(phi)
    py = p * sinth * np.sin(phi)
    pz = p * costh

    Eg = p
    EZ = np.sqrt(p*p + mZ*mZ)

    pZ = np.array([EZ,  px,  py,  pz], dtype=np.float64)
    pg = np.array([Eg, -px, -py, -pz], dtype=np.float64)  # recoil

    return True, np.vstack([p1, p2, pZ, pg])


def zg_from_unit(u, Ecm: float, mZ: float = MZ_DEFAULT):
    """u in [0,1)^2 -> (cos(theta), phi) = (2 u0 - 1, 2 pi u1) -> build_event_zg."""
    costh = 2.0 * u[0] - 1.0
    phi = TWOPI * u[1]
    return build_event_zg(Ecm, costh, phi, mZ=mZ)


def dphi2_dcosth_dphi(Ecm: float, mZ: float = MZ_DEFAULT) -> float:
    """
    dPhi2 = [1/(16*pi^2)] * (|p|/Ecm) * dOmega
    with dOmega = dcos(theta) dphi.
    """
    s = Ecm * Ecm
    if s <= mZ*mZ:
        return 0.0
    p = (s - mZ*mZ) / (2.0 * Ecm)
    return (1.0 / (16.0 * np.pi**2)) * (p / Ecm)


def unit_volume_zg(Ecm: float, mZ: float = MZ_DEFAULT) -> float:
    """Phase-space factor of the unit square chart: dPhi2/dOmega * (2 * 2pi)."""
    return dphi2_dcosth_dphi(Ecm, mZ) * 4.0 * np.pi
