"""Exception hierarchy for the REMIM search.

Failures are scoped to the smallest unit that can recover from them:
- ComputationError: one score test failed; the scan skips that position.
- FitError: a variance-component fit failed; the affected refinement step
  keeps the QTL where it was.
- NoCandidateError: a scan was requested over an empty position set; fatal
  for the current trait only.
"""


class RemimError(Exception):
    """Base class for errors raised by the REMIM search."""


class ComputationError(RemimError):
    """A score test could not be computed for a candidate position."""


class FitError(RemimError):
    """A variance-component model could not be fitted."""


class NoCandidateError(RemimError):
    """A scan was requested over an empty set of positions."""
