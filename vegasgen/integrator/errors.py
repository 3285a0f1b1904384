# vegasgen/integrator/errors.py


class VegasError(Exception):
    """Base class for integrator and unweighting failures."""


class FatalConfigError(VegasError, ValueError):
    """
    Mis-configured run (bins, NCALL, dimensions, seed, ...).
    Aborts the run; never raised for a rejected sample.
    """


class IntegrandError(FatalConfigError):
    """Integrand broke its contract (negative weight, wrong dimension)."""


class TrialBudgetExceeded(FatalConfigError):
    """Unweighting used up MAXTRIAL trials before reaching the event target."""

    def __init__(self, trials: int, accepted: int, requested: int):
        self.trials = trials
        self.accepted = accepted
        self.requested = requested
        super().__init__(
            f"Unweighting trial budget exhausted: {accepted}/{requested} events "
            f"after {trials} trials. Increase MAXTRIAL or check the integrand efficiency."
        )
