"""Scheduled discrete events and the event applicator.

An event modifies one state component at an exact time, either by
adding an operand or by multiplying by it. Events sharing a trigger time
are collected into one EventBatch and applied sequentially, in schedule
order, as a single state transition.

Notes
-----
The engine does not parse files itself; ``read_event_table`` is a thin
loader that materializes Event records from a table with columns
``time, component, value, method``.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Iterator, List, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from odevents.errors import (
    ConfigurationError,
    InvalidEventOperation,
    UnknownComponent,
)
from odevents.state import StateVector

log = logging.getLogger(__name__)

EVENT_TABLE_COLUMNS = ("time", "component", "value", "method")


class EventOperation(Enum):
    """How an event combines its operand with the current value."""

    ADD = "add"
    MULTIPLY = "multiply"

    @classmethod
    def parse(cls, tag: Any, event: Any = None) -> "EventOperation":
        """Convert an operation tag to an EventOperation.

        Accepts enum members and the strings 'add', 'multiply', '+', '*'
        (case-insensitive).

        Raises
        ------
        InvalidEventOperation
            If the tag is not recognized
        """
        if isinstance(tag, cls):
            return tag
        if isinstance(tag, str):
            key = tag.strip().lower()
            aliases = {"+": "add", "*": "multiply"}
            key = aliases.get(key, key)
            for member in cls:
                if member.value == key:
                    return member
        raise InvalidEventOperation(
            f"Invalid event operation {tag!r}; expected 'add' or 'multiply'",
            event=event,
        )

    def apply(self, old: float, operand: float) -> float:
        if self is EventOperation.ADD:
            return old + operand
        return old * operand


@dataclass(frozen=True)
class Event:
    """A scheduled modification of one state component.

    Parameters
    ----------
    time : float
        Trigger time
    component : str
        Name of the state component to modify
    operation : EventOperation or str
        'add' or 'multiply'. Validated when the event is applied.
    operand : float
        Value added to, or multiplied with, the component
    """

    time: float
    component: str
    operation: Union[EventOperation, str]
    operand: float

    def __repr__(self):
        op = getattr(self.operation, "value", self.operation)
        return (
            f"Event(time={self.time}, component='{self.component}', "
            f"operation='{op}', operand={self.operand})"
        )


@dataclass(frozen=True)
class EventBatch:
    """All events sharing one trigger time, in schedule order."""

    time: float
    events: Tuple[Event, ...]

    def __len__(self):
        return len(self.events)


def times_equal(a: float, b: float, tol: float) -> bool:
    """True if a and b are the same instant under the snapping policy.

    Two times are the same instant when
    ``|a - b| <= tol * max(1, |a|, |b|)``.
    """
    return abs(a - b) <= tol * max(1.0, abs(a), abs(b))


class EventSchedule:
    """Read-only, time-ordered sequence of events.

    Parameters
    ----------
    events : iterable of Event
        Events sorted ascending by time. Events with equal times keep
        the order given here.

    Raises
    ------
    ConfigurationError
        If the events are not sorted by time or a time is not finite
    """

    def __init__(self, events: Iterable[Event] = ()):
        self._events = tuple(events)
        for event in self._events:
            if not isinstance(event, Event):
                raise ConfigurationError(f"Expected Event, got {event!r}")
            if not np.isfinite(event.time):
                raise ConfigurationError(f"Event time must be finite: {event}")
        for prev, event in zip(self._events, self._events[1:]):
            if event.time < prev.time:
                raise ConfigurationError(
                    f"Event schedule is not sorted by time: {event} "
                    f"follows {prev}"
                )

    @property
    def events(self) -> Tuple[Event, ...]:
        return self._events

    def times(self, tol: float = 0.0) -> List[float]:
        """Distinct trigger times in ascending order."""
        return [batch.time for batch in self.batches(tol)]

    def batches(self, tol: float = 0.0) -> Iterator[EventBatch]:
        """Group events sharing a trigger time.

        Times within the snapping tolerance of the first event of a
        group belong to that group.
        """
        group: List[Event] = []
        for event in self._events:
            if group and not times_equal(group[0].time, event.time, tol):
                yield EventBatch(group[0].time, tuple(group))
                group = []
            group.append(event)
        if group:
            yield EventBatch(group[0].time, tuple(group))

    def check_bounds(self, t0: float, tN: float, tol: float = 0.0):
        """Raise ConfigurationError for events outside [t0, tN]."""
        for event in self._events:
            inside = t0 <= event.time <= tN
            if not inside and not (
                times_equal(event.time, t0, tol) or times_equal(event.time, tN, tol)
            ):
                raise ConfigurationError(
                    f"Event time {event.time} outside integration interval "
                    f"[{t0}, {tN}]: {event}"
                )

    def __len__(self):
        return len(self._events)

    def __iter__(self):
        return iter(self._events)

    def __bool__(self):
        return len(self._events) > 0

    def __repr__(self):
        return f"EventSchedule(n_events={len(self._events)})"


def as_schedule(events: Any) -> EventSchedule:
    """Coerce None, an EventSchedule or a sequence of Events."""
    if events is None:
        return EventSchedule()
    if isinstance(events, EventSchedule):
        return events
    return EventSchedule(events)


def apply_event(state: StateVector, event: Event) -> StateVector:
    """Apply a single event, returning a new state.

    Raises
    ------
    UnknownComponent
        If the event names a component the state does not have
    InvalidEventOperation
        If the event operation is not recognized
    """
    operation = EventOperation.parse(event.operation, event=event)
    try:
        idx = state.index_of(event.component)
    except UnknownComponent as err:
        raise UnknownComponent(
            f"Event at t={event.time} targets unknown component "
            f"'{event.component}'; state has {list(state.names)}",
            event=event,
            state=state,
        ) from err
    values = state.values
    values[idx] = operation.apply(values[idx], float(event.operand))
    return state.with_values(values)


def apply_events(state: StateVector, events: Sequence[Event]) -> StateVector:
    """Apply events strictly in order as one state transition.

    Each event sees the result of the previous one. The input state is
    not modified.

    Examples
    --------
    >>> y = StateVector(["x"], [1.0])
    >>> batch = [Event(2.0, "x", "add", 5.0), Event(2.0, "x", "multiply", 2.0)]
    >>> apply_events(y, batch)["x"]
    12.0
    """
    for event in events:
        state = apply_event(state, event)
    if events:
        log.debug("Applied %d event(s) at t=%g", len(events), events[0].time)
    return state


def read_event_table(source: Union[str, pd.DataFrame]) -> EventSchedule:
    """Materialize an event schedule from a table.

    Parameters
    ----------
    source : str, path or pandas.DataFrame
        DataFrame or CSV file with columns time, component, value, method.
        One row per scalar event.

    Returns
    -------
    schedule : EventSchedule
        Events sorted by time. Rows sharing a time keep their input order.

    Examples
    --------
    >>> df = pd.DataFrame({
    ...     'time': [10.0, 20.0],
    ...     'component': ['y_gut', 'y_gut'],
    ...     'value': [5.0, 5.0],
    ...     'method': ['add', 'add'],
    ... })
    >>> len(read_event_table(df))
    2
    """
    if isinstance(source, pd.DataFrame):
        df = source
    else:
        df = pd.read_csv(source)

    missing = [c for c in EVENT_TABLE_COLUMNS if c not in df.columns]
    if missing:
        raise ConfigurationError(
            f"Event table missing column(s) {missing}; "
            f"expected {list(EVENT_TABLE_COLUMNS)}"
        )

    df = df.sort_values("time", kind="stable")
    events = []
    for row in df.itertuples(index=False):
        event = Event(
            time=float(row.time),
            component=str(row.component),
            operation=str(row.method),
            operand=float(row.value),
        )
        EventOperation.parse(event.operation, event=event)
        events.append(event)
    return EventSchedule(events)


def dosing_schedule(
    component: str,
    amount: float,
    start: float,
    interval: float,
    count: int,
    operation: Union[EventOperation, str] = EventOperation.ADD,
) -> EventSchedule:
    """Regularly repeated events on one component.

    Examples
    --------
    >>> doses = dosing_schedule("y_gut", 5.0, start=10.0, interval=10.0, count=7)
    >>> doses.times()
    [10.0, 20.0, 30.0, 40.0, 50.0, 60.0, 70.0]
    """
    if count < 0:
        raise ConfigurationError(f"count must be non-negative, got {count}")
    if count > 1 and interval <= 0:
        raise ConfigurationError(f"interval must be positive, got {interval}")
    return EventSchedule(
        Event(float(start + i * interval), component, operation, float(amount))
        for i in range(count)
    )


def merge_schedules(*schedules: Iterable[Event]) -> EventSchedule:
    """Merge schedules by time.

    At equal times, events from earlier arguments come first.
    """
    tagged = []
    for i, schedule in enumerate(schedules):
        for j, event in enumerate(as_schedule(schedule)):
            tagged.append((event.time, i, j, event))
    tagged.sort(key=lambda item: item[:3])
    return EventSchedule(item[3] for item in tagged)
