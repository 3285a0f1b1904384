# vegasgen/integrator/config.py
import json
from dataclasses import dataclass, fields, asdict
from pathlib import Path

from vegasgen.integrator.errors import FatalConfigError

SEEDMAX = 2147483647

# Steering-card keys -> attribute names
_KEYS = {
    "BINS": "bins",
    "LAMBDA": "lam",
    "NCALL": "ncall",
    "ITER": "iterations",
    "CHI2MAX": "chi2max",
    "CHI2": "chi2max",
    "PRECISION": "precision",
    "DEBUG": "debug",
    "MAXITER": "max_iterations",
    "SEED": "seed",
    "THREADS": "threads",
    "CHUNK": "chunk",
    "MAXTRIAL": "max_trials",
    "ENVELOPE": "envelope",
    "PRESAMPLE": "presample",
    "SAFETY": "safety",
}

ENVELOPE_MODES = ("running", "presample")

# whole-number settings; JSON cards may spell them as 1e3
_INT_FIELDS = (
    "bins", "ncall", "iterations", "max_iterations", "seed",
    "threads", "chunk", "max_trials", "presample", "debug",
)


@dataclass
class VegasConfig:
    """
    Integrator + unweighting settings.

    Attribute names are the python spelling of the steering keys
    (BINS, LAMBDA, NCALL, ITER, CHI2MAX, PRECISION, DEBUG, ...).
    """
    bins: int = 128
    lam: float = 1.5
    ncall: int = 20000
    iterations: int = 5
    chi2max: float = 3.0
    precision: float = 0.01
    debug: int = 0
    max_iterations: int = 30
    seed: int = 12345
    threads: int = 1
    chunk: int = 1000
    max_trials: int = 10_000_000
    envelope: str = "running"
    presample: int = 20000
    safety: float = 1.0

    @classmethod
    def from_dict(cls, d: dict) -> "VegasConfig":
        """Build from a steering block; keys are case-insensitive."""
        names = {f.name for f in fields(cls)}
        kwargs = {}
        for key, val in d.items():
            attr = _KEYS.get(str(key).upper())
            if attr is None and key in names:
                attr = key
            if attr is None:
                raise FatalConfigError(f"Unknown integrator option: {key!r}")
            kwargs[attr] = val
        cfg = cls(**kwargs)
        cfg.validate()
        return cfg

    @classmethod
    def from_json(cls, path) -> "VegasConfig":
        """
        Load from a JSON card. Uses the "VEGAS" (or "INTEGRATOR") block if
        the file has one, otherwise the top-level object.
        """
        p = Path(path).expanduser()
        if not p.exists():
            raise FatalConfigError(f"Config file does not exist: {p}")
        with open(p) as f:
            try:
                d = json.load(f)
            except json.JSONDecodeError as e:
                raise FatalConfigError(f"Malformed JSON in {p}: {e}") from e
        if not isinstance(d, dict):
            raise FatalConfigError(f"{p}: expected a JSON object")
        for block in ("VEGAS", "INTEGRATOR"):
            if block in d:
                d = d[block]
                break
        return cls.from_dict(d)

    def to_dict(self) -> dict:
        return asdict(self)

    def validate(self) -> "VegasConfig":
        for name in _INT_FIELDS:
            val = getattr(self, name)
            try:
                as_int = int(val)
            except (TypeError, ValueError, OverflowError) as e:
                raise FatalConfigError(f"{name} must be an integer, got {val!r}") from e
            if as_int != val:
                raise FatalConfigError(f"{name} must be an integer, got {val!r}")
            setattr(self, name, as_int)

        if self.bins <= 0 or self.bins % 2 != 0:
            raise FatalConfigError(f"BINS must be a positive even integer, got {self.bins}")
        if self.ncall <= 0:
            raise FatalConfigError(f"NCALL must be a positive integer, got {self.ncall}")
        if not (0.0 < self.lam <= 2.0):
            raise FatalConfigError(f"LAMBDA must be in (0, 2], got {self.lam}")
        if self.iterations < 1:
            raise FatalConfigError(f"ITER must be >= 1, got {self.iterations}")
        if self.max_iterations < self.iterations:
            raise FatalConfigError(
                f"MAXITER ({self.max_iterations}) must be >= ITER ({self.iterations})"
            )
        if self.chi2max <= 0:
            raise FatalConfigError(f"CHI2MAX must be > 0, got {self.chi2max}")
        if self.precision <= 0:
            raise FatalConfigError(f"PRECISION must be > 0, got {self.precision}")
        if not (0 <= self.seed <= SEEDMAX):
            raise FatalConfigError(f"Invalid random seed {self.seed} (valid: 0 ... {SEEDMAX})")
        if self.threads < 1:
            raise FatalConfigError(f"THREADS must be >= 1, got {self.threads}")
        if self.chunk < 1:
            raise FatalConfigError(f"CHUNK must be >= 1, got {self.chunk}")
        if self.max_trials < 1:
            raise FatalConfigError(f"MAXTRIAL must be >= 1, got {self.max_trials}")
        if self.envelope not in ENVELOPE_MODES:
            raise FatalConfigError(
                f"ENVELOPE must be one of {ENVELOPE_MODES}, got {self.envelope!r}"
            )
        if self.presample < 1:
            raise FatalConfigError(f"PRESAMPLE must be >= 1, got {self.presample}")
        if self.safety < 1.0:
            raise FatalConfigError(f"SAFETY must be >= 1, got {self.safety}")
        return self
