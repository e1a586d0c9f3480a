"""Exception types raised by pestspread.

Configuration problems are detected before a simulation starts and raise
ConfigurationError. A broken population invariant found at a process
boundary raises StateInvariantViolation, which indicates a programming
error rather than bad input. Dispersers dropped off the grid or lost to a
failed establishment are ordinary events and are only counted.
"""


class ConfigurationError(ValueError):
    """Invalid configuration: bad dimensions, parameters or enum strings."""


class StateInvariantViolation(RuntimeError):
    """A host count went negative or cohort sums no longer match totals."""
