"""Trajectory storage and rendering.

This module provides the Trajectory class holding the simulated state at
each requested output time, plus the run statistics collected by the
TrajectoryDriver.
"""

import os
from dataclasses import asdict, dataclass, field
from typing import Any, Iterator, Optional, Tuple

import numpy as np
import pandas as pd

from odevents.state import StateVector


@dataclass
class RunStats:
    """Counters collected during one integration run."""

    n_steps: int = 0
    n_rejected: int = 0
    n_rhs_evals: int = 0
    n_events: int = 0

    @property
    def n_attempted(self) -> int:
        return self.n_steps + self.n_rejected

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class Trajectory:
    """Simulated states at the caller-requested output times.

    One row per requested output time, in request order (duplicates kept).
    The state recorded at a time that is also an event time is the
    post-event state.

    Parameters
    ----------
    time : ndarray
        Output times, shape (n_points,)
    states : DataFrame
        States with time index, one column per state component
    stats : RunStats, optional
        Step, rejection, RHS-evaluation and event counters
    config : IntegratorConfig, optional
        Configuration used for this run

    Examples
    --------
    >>> traj = integrate(rhs, {'y': 1.0}, {'k': 0.5}, [0.0, 1.0, 2.0])
    >>> traj['y']
    array([1.        , 0.60653066, 0.36787944])
    >>> df = traj.to_dataframe()
    """

    time: np.ndarray
    states: pd.DataFrame
    stats: RunStats = field(default_factory=RunStats)
    config: Optional[Any] = None

    def __post_init__(self):
        """Validate dimensions and ensure the time index is set."""
        self.time = np.asarray(self.time, dtype=float)
        if len(self.states) != len(self.time):
            raise ValueError(
                f"States length {len(self.states)} != time length "
                f"{len(self.time)}"
            )
        if not np.array_equal(self.states.index.values, self.time):
            self.states.index = pd.Index(self.time, name="time")
        self.states.index.name = "time"

    @property
    def n_points(self) -> int:
        """Number of output times."""
        return len(self.time)

    @property
    def n_states(self) -> int:
        """Number of state components."""
        return len(self.states.columns)

    @property
    def state_names(self) -> tuple:
        return tuple(self.states.columns)

    @property
    def t_start(self) -> float:
        return float(self.time[0])

    @property
    def t_end(self) -> float:
        return float(self.time[-1])

    def state_at(self, index: int) -> StateVector:
        """State recorded at the index-th output time."""
        return StateVector(self.state_names, self.states.to_numpy()[index])

    @property
    def final_state(self) -> StateVector:
        return self.state_at(-1)

    def items(self) -> Iterator[Tuple[float, StateVector]]:
        """Iterate over (time, state) pairs in output order."""
        values = self.states.to_numpy()
        for t, row in zip(self.time, values):
            yield float(t), StateVector(self.state_names, row)

    def __iter__(self):
        return self.items()

    def __len__(self):
        return self.n_points

    def __getitem__(self, name: str) -> np.ndarray:
        """Values of one component at every output time."""
        return self.states[name].to_numpy()

    def to_dataframe(self) -> pd.DataFrame:
        """Convert to a DataFrame with time as a column (not index).

        Examples
        --------
        >>> df = traj.to_dataframe()
        >>> df.columns.tolist()
        ['time', 'y_gut', 'y_cent', 'y_peri']
        """
        return self.states.reset_index()

    def save(self, filename: str):
        """Save the trajectory to file.

        Supports .npz (NumPy), .csv (via pandas), and .mat (MATLAB) formats.

        Parameters
        ----------
        filename : str
            Output filename with extension

        Examples
        --------
        >>> traj.save('trajectory.npz')
        >>> traj.save('trajectory.csv')
        """
        ext = os.path.splitext(str(filename))[1].lower()

        if ext == ".npz":
            np.savez_compressed(
                filename,
                time=self.time,
                states=self.states.to_numpy(),
                state_columns=np.array(self.state_names),
                **{f"stat_{k}": v for k, v in self.stats.as_dict().items()},
            )

        elif ext == ".csv":
            self.to_dataframe().to_csv(filename, index=False)

        elif ext == ".mat":
            from scipy.io import savemat

            savemat(
                filename,
                {
                    "time": self.time,
                    "states": self.states.to_numpy(),
                    "state_columns": np.array(self.state_names, dtype=object),
                },
            )

        else:
            raise ValueError(
                f"Unsupported file extension '{ext}'. Use .npz, .csv, or .mat"
            )

    @classmethod
    def load(cls, filename: str) -> "Trajectory":
        """Load a trajectory saved with save().

        Parameters
        ----------
        filename : str
            Input filename (.npz, .csv or .mat format)

        Returns
        -------
        trajectory : Trajectory
        """
        ext = os.path.splitext(str(filename))[1].lower()

        if ext == ".npz":
            data = np.load(filename, allow_pickle=False)
            time = data["time"]
            columns = data["state_columns"].tolist()
            stats = RunStats(
                **{
                    k: int(data[f"stat_{k}"])
                    for k in RunStats().as_dict()
                    if f"stat_{k}" in data
                }
            )
            states = pd.DataFrame(data["states"], index=time, columns=columns)
            return cls(time=time, states=states, stats=stats)

        elif ext == ".csv":
            df = pd.read_csv(filename)
            time = df.pop("time").to_numpy()
            df.index = pd.Index(time, name="time")
            return cls(time=time, states=df)

        elif ext == ".mat":
            from scipy.io import loadmat

            data = loadmat(filename)
            time = data["time"].flatten()
            states_array = np.atleast_2d(data["states"])
            if "state_columns" in data:
                columns = [str(np.squeeze(c)) for c in data["state_columns"].flatten()]
            else:
                columns = [f"y{i + 1}" for i in range(states_array.shape[1])]
            states = pd.DataFrame(states_array, index=time, columns=columns)
            return cls(time=time, states=states)

        else:
            raise ValueError(
                f"Unsupported file extension '{ext}'. Use .npz, .csv or .mat"
            )

    def __repr__(self):
        return (
            f"Trajectory(n_points={self.n_points}, n_states={self.n_states}, "
            f"t=[{self.t_start:g}, {self.t_end:g}])"
        )
