"""Exception types raised by the integration engine.

Every error is fatal to the run that raised it. Errors carry enough
context (last reached time and state, offending event) to reproduce
and debug the failure.
"""

from typing import Any, Optional


class OdeventsError(Exception):
    """Base class for all errors raised by odevents."""


class ConfigurationError(OdeventsError, ValueError):
    """Invalid run configuration detected before any integration work.

    Raised for non-ascending or out-of-range output times, events outside
    the integration interval, empty states, dimension mismatches between
    the initial state and the RHS output, and invalid solver settings.
    """


class EventError(OdeventsError):
    """Base class for malformed events.

    Parameters
    ----------
    message : str
        Error description
    event : Event, optional
        The event that could not be applied
    """

    def __init__(self, message: str, event: Any = None):
        super().__init__(message)
        self.event = event


class UnknownComponent(EventError, KeyError):
    """Event (or lookup) names a component that is not in the state."""

    def __init__(self, message: str, event: Any = None, state: Any = None):
        super().__init__(message, event=event)
        self.state = state

    def __str__(self):
        # KeyError would otherwise repr() the message
        return self.args[0]


class InvalidEventOperation(EventError, ValueError):
    """Event operation tag is neither 'add' nor 'multiply'."""


class IntegrationFailure(OdeventsError, RuntimeError):
    """Adaptive stepper could not satisfy the tolerances at h_min.

    Parameters
    ----------
    message : str
        Error description
    t : float
        Last successfully reached time
    y : ndarray
        State at time t
    h : float, optional
        Step size of the final rejected attempt
    """

    def __init__(self, message: str, t: float, y: Any, h: Optional[float] = None):
        super().__init__(message)
        self.t = t
        self.y = y
        self.h = h


class IntegrationTimeout(OdeventsError, RuntimeError):
    """Step-count or wall-clock budget exceeded.

    No partial trajectory is returned. ``t`` and ``y`` hold the last
    reached time and state.
    """

    def __init__(self, message: str, t: float, y: Any = None):
        super().__init__(message)
        self.t = t
        self.y = y


class IntegrationCancelled(IntegrationTimeout):
    """Run aborted through its cancellation token."""
