"""
hostops - Orchestrated host maintenance procedures.

Backups, cleanup and monitoring procedures share one shape: check the
host's preconditions, run an ordered list of named steps, log each
step's outcome, keep going past non-critical failures and print a
summary. This package implements that shape once.

Example usage:
    from hostops import Orchestrator, get_config, get_procedure

    orchestrator = Orchestrator(get_config())
    result = orchestrator.run(get_procedure("system-health-check"))
    print(result.summary.to_dict())
"""

__version__ = "0.1.0"
__all__ = [
    "Orchestrator",
    "StepRunner",
    "Step",
    "get_config",
    "get_procedure",
    "__version__",
]


# Lazy imports to avoid loading the procedure catalog at import time
def __getattr__(name: str):
    if name == "Orchestrator":
        from hostops.orchestrator import Orchestrator
        return Orchestrator
    if name == "StepRunner":
        from hostops.runner import StepRunner
        return StepRunner
    if name == "Step":
        from hostops.steps import Step
        return Step
    if name == "get_config":
        from hostops.config import get_config
        return get_config
    if name == "get_procedure":
        from hostops.procedures import get_procedure
        return get_procedure
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
