"""
Diagnostics for trap simulations

Diagnostics read the resources shared by the physics modules (particle
position and velocity, the trap potential) at the top of every step and
write them out as CSV, ``.npy`` or NetCDF files, or to the screen.
"""
from abc import ABC, abstractmethod
import numpy as np
import xarray as xr

from .core import ConfigurationError, Diagnostic, Simulation
from .isosurface import AXES, slice_isosurface


class OutputUtility(ABC):
    """Interface of the writers which diagnostics delegate their output
    to"""
    def __init__(self, **kwargs):
        pass

    @abstractmethod
    def diagnose(self, data):
        """Take one record"""
        pass

    @abstractmethod
    def finalize(self):
        """Flush everything at the end of the run"""
        pass

    @abstractmethod
    def write_data(self):
        """Flush what has been recorded so far"""
        pass


class PrintOutputUtility(OutputUtility):
    """Print every record, keep nothing"""
    def diagnose(self, data):
        print(data)

    def finalize(self):
        pass

    def write_data(self):
        pass


class CSVOutputUtility(OutputUtility):
    """Buffer records in memory and write them as comma separated values

    Parameters
    ----------
    filename : str
        Output file, overwritten by every write.
    diagnostic_size : (int, int)
        Buffer shape: number of records, values per record. Rows which
        were never filled are written as zeros.
    """

    def __init__(self, filename, diagnostic_size, **kwargs):
        self._filename = filename
        self._buffer = np.zeros(diagnostic_size)
        self._buffer_index = 0

    def diagnose(self, data):
        self._buffer[self._buffer_index, :] = data
        self._buffer_index += 1

    def finalize(self):
        self._write_buffer()

    def write_data(self):
        self._write_buffer()

    def _write_buffer(self):
        with open(self._filename, 'wb') as f:
            np.savetxt(f, self._buffer, delimiter=",")


class NPYOutputUtility(CSVOutputUtility):
    """Same buffer as :class:`CSVOutputUtility`, written with
    :func:`numpy.save`"""

    def _write_buffer(self):
        with open(self._filename, 'wb') as f:
            np.save(f, self._buffer)


utilities = {
    "stdout": PrintOutputUtility,
    "csv": CSVOutputUtility,
    "npy": NPYOutputUtility
}


class IntervalHandler:
    """Run `action` at most once per `interval` of simulation time

    Parameters
    ----------
    interval : float, None
        Minimum time between two actions. None runs the action on every
        call.
    action : callable
        Called without arguments.

    Attributes
    ----------
    current_step : int
        Number of times the action has run.
    """
    def __init__(self, interval, action):
        self._interval = interval
        self._action = action
        self._last_action = None
        self.current_step = 0

        if interval is None:
            self.perform_action = self._action_every_time

    def _action_every_time(self, time):
        self._action()
        self.current_step += 1

    def perform_action(self, time):
        if self._is_due(time):
            self._action()
            self._last_action = time
            self.current_step += 1

    def _is_due(self, time):
        # the first call always acts
        if self._last_action is None:
            return True
        return time >= self._last_action + self._interval


class ParticleDiagnostic(Diagnostic):
    """Record the position or velocity of a :class:`ChargedParticle`

    Parameters
    ----------
    owner : Simulation
       Simulation object containing current object.
    input_data : dict
       The expected parameters are:

       - ``"component"`` :
           ``"position"`` or ``"velocity"``, default ``"position"``
       - ``"output_type"`` :
           ``"csv"``, ``"npy"`` or ``"stdout"``, default ``"csv"``
       - ``"write_interval"`` :
           Time between intermediate writes of the buffer, optional

    Attributes
    ----------
    data : :class:`numpy.ndarray`, None
        The shared particle vector.
    outputter : :class:`OutputUtility`, None
        Helper which buffers and writes the data.
    """
    def __init__(self, owner: Simulation, input_data: dict):
        super().__init__(owner, input_data)
        self.data = None
        self.component = input_data.get("component", "position")
        self.output = input_data.get("output_type", "csv")
        self.outputter = None
        self.interval = input_data.get('write_interval', None)
        self.handler = None
        self._needed_resources = {"ChargedParticle:" + self.component: "data"}

    def diagnose(self):
        self.outputter.diagnose(self.data)
        if self.handler:
            self.handler.perform_action(self._owner.clock.time)

    def initialize(self):
        super().initialize()
        # one row per step, plus the final state
        self._input_data["diagnostic_size"] = (
            self._owner.clock.num_steps + 1, 3)

        # Use composition to provide i/o functionality
        self.outputter = utilities[self.output](**self._input_data)

        if self.interval:
            self.handler = IntervalHandler(self.interval,
                                           self.outputter.write_data)

    def finalize(self):
        self.diagnose()
        self.outputter.finalize()


class ClockDiagnostic(Diagnostic):
    """Record the simulation time of every step to a CSV file

    Row n of the file is the time of the n-th recorded state, so the file
    lines up with the output of a :class:`ParticleDiagnostic`.

    Parameters
    ----------
    owner : Simulation
        The simulation this diagnostic belongs to
    input_data : dict
        ``"write_interval"`` is the optional time between intermediate
        writes; without it the file is written once, at the end.
    """

    def __init__(self, owner: Simulation, input_data: dict):
        super().__init__(owner, input_data)
        self.filename = input_data["filename"]
        self.csv = None
        self.interval = self._input_data.get('write_interval', None)
        self.handler = None

    def diagnose(self):
        if self.handler:
            self.handler.perform_action(self._owner.clock.time)
        self.csv.diagnose(self._owner.clock.time)

    def initialize(self):
        super().initialize()
        diagnostic_size = (self._owner.clock.num_steps + 1, 1)
        self.csv = CSVOutputUtility(self.filename, diagnostic_size)
        if self.interval:
            self.handler = IntervalHandler(self.interval, self.csv.write_data)

    def finalize(self):
        self.diagnose()
        self.csv.finalize()


class HistoryDiagnostic(Diagnostic):
    """Time histories of shared resources in one NetCDF file

    Any shared array (or scalar) can be traced. Every trace gets a value
    per step plus the final state, stored along a ``timestep`` dimension
    with the matching ``time`` coordinate, and the dataset is written
    with xarray at the end of the run.

    Examples
    --------
    In the format expected for a ``toml`` input file::

        [Diagnostics.histories]
        filename = "history.nc"

        [[Diagnostics.histories.traces]]
        name = 'ChargedParticle:position'
        coords = ["component"]
        long_name = 'Particle Position'

        [[Diagnostics.histories.traces]]
        name = 'ChargedParticle:velocity'
        coords = ["component"]

    The dataset variable is named after the resource, with ``:``
    replaced by ``_``, unless a ``label`` is given.
    """
    def __init__(self, owner: Simulation, input_data: dict) -> None:
        super().__init__(owner, input_data)
        self._filename = input_data['filename']
        self._traces = xr.Dataset()
        self._trace_specs = input_data['traces']
        self._labels = {t['name']: t.get('label', t['name'].replace(':', '_'))
                        for t in self._trace_specs}
        self._handler = IntervalHandler(None, self.do_diagnostic)

        # get shared resources
        self._needed_resources = {k: f'_data_{k}' for k in self._labels}

    def diagnose(self):
        self._handler.perform_action(self._owner.clock.time)

    def do_diagnostic(self):
        this_step = self._handler.current_step
        self._traces['time'].data[this_step] = self._owner.clock.time

        for name, label in self._labels.items():
            self._traces[label].data[this_step, ...] = \
                self.__dict__[f'_data_{name}']

    def initialize(self):
        super().initialize()
        num_outputs = self._owner.clock.num_steps + 1

        self._traces.coords['time'] = ('timestep', np.zeros(num_outputs))
        self._traces.coords['time'].attrs['long_name'] = 'Time'

        for trace in self._trace_specs:
            label = self._labels[trace['name']]
            trace_data = np.asarray(self.__dict__[f'_data_{trace["name"]}'])
            dims = trace.get('coords',
                             [f'{label}_dim{i}'
                              for i in range(trace_data.ndim)])
            self._traces[label] = (
                ('timestep', *dims),
                np.zeros((num_outputs,) + trace_data.shape))
            if 'units' in trace:
                self._traces[label].attrs['units'] = trace['units']
            if 'long_name' in trace:
                self._traces[label].attrs['long_name'] = trace['long_name']

    def finalize(self):
        self.diagnose()
        self._traces.to_netcdf(self._filename, 'w', engine='scipy')


class PotentialDiagnostic(Diagnostic):
    """Snapshots of the trap potential as it evolves in time

    The shared ``"TrapField:potential"`` is sampled either on a plane of
    constant x, y or z, or in cylindrical (z, r) coordinates, and the
    snapshots are written to a NetCDF file at the end of the run.

    Parameters
    ----------
    owner : Simulation
        The :class:`Simulation` object that contains this object
    input_data : dict
        The expected parameters are:

        - ``"cylindrical"`` :
            `bool`, sample in (z, r), default ``False``
        - ``"axis"``, ``"offset"`` :
            The plane to sample when not cylindrical, default ``"z"``
            and ``0``
        - ``"range"`` :
            Sampling range of the in-plane axes (or of z), default
            ``[-1, 1]``
        - ``"r_max"`` :
            Largest sampled radius in cylindrical mode, default ``1``
        - ``"num_points"`` :
            Samples per axis, default 100
        - ``"dump_interval"`` :
            Time between snapshots, default is every step
        - ``"periods"`` :
            Sample over this many drive periods of a time-dependent trap
            instead of following the clock. The frames start at the
            clock's start time and include both ends of the span.
        - ``"num_frames"`` :
            Frames taken when ``"periods"`` is set, default 21
    """
    def __init__(self, owner: Simulation, input_data: dict):
        super().__init__(owner, input_data)
        self.field = None
        self.filename = input_data["filename"]
        self.cylindrical = input_data.get("cylindrical", False)
        self.axis = input_data.get("axis", "z")
        self.offset = input_data.get("offset", 0.0)
        self.range = tuple(input_data.get("range", (-1.0, 1.0)))
        self.r_max = input_data.get("r_max", 1.0)
        self.num_points = input_data.get("num_points", 100)
        self.periods = input_data.get("periods", None)
        self.num_frames = input_data.get("num_frames", 21)
        self._snapshots = []
        self._times = []
        self._handler = None
        self._needed_resources = {"TrapField:potential": "field"}

    def diagnose(self):
        if self.periods is None:
            self._handler.perform_action(self._owner.clock.time)

    def do_diagnostic(self):
        self._take_snapshot(self._owner.clock.time)

    def _take_snapshot(self, time):
        if self.cylindrical:
            snapshot = self.field.sample_cylindrical(
                np.linspace(*self.range, self.num_points),
                np.linspace(0, self.r_max, self.num_points), time)
        else:
            snapshot = self.field.sample_plane(
                self.axis, self.offset, self.range, self.range,
                self.num_points, time)
        snapshot.attrs.pop("time")
        self._snapshots.append(snapshot)
        self._times.append(time)

    def initialize(self):
        super().initialize()
        if self.periods is not None and self.num_frames < 2:
            raise ConfigurationError("num_frames must be at least 2")
        self._handler = IntervalHandler(
            self._input_data.get("dump_interval", None), self.do_diagnostic)

    def finalize(self):
        if self.periods is None:
            self.diagnose()
        else:
            start = self._owner.clock.start_time
            span = self.periods * self.field.drive_period
            for time in np.linspace(start, start + span, self.num_frames):
                self._take_snapshot(time)
        data = xr.concat(self._snapshots, dim="time")
        data = data.assign_coords(time=self._times)
        data.time.attrs["long_name"] = "Time"
        data.name = "potential"
        data.to_netcdf(self.filename, 'w', engine='scipy')


class IsosurfaceDiagnostic(Diagnostic):
    """Write the contour lines of equipotential surfaces

    The shared ``"TrapField:potential"`` is sliced once, at the start
    time of the run. Each output row holds
    ``isovalue, axis, line, x, y, z``, where ``axis`` is 0, 1 or 2 for
    planes of constant x, y or z and ``line`` numbers the contour lines.

    Parameters
    ----------
    owner : Simulation
        The :class:`Simulation` object that contains this object
    input_data : dict
        The expected parameters are:

        - ``"isovalues"`` :
            List of potential values, default ``[0]``
        - ``"range"`` :
            Sampling range for all three axes, default ``[-1, 1]``
        - ``"nlevels"``, ``"num_points"``, ``"slices"`` :
            Passed to :func:`iontrap.isosurface.slice_isosurface`
        - ``"output_type"`` :
            ``"csv"`` or ``"npy"``, default ``"csv"``
    """
    def __init__(self, owner: Simulation, input_data: dict):
        super().__init__(owner, input_data)
        self.field = None
        self.filename = input_data["filename"]
        self.isovalues = input_data.get("isovalues", [0.0])
        self.slice_sets = []
        self._needed_resources = {"TrapField:potential": "field"}

    def diagnose(self):
        """Isosurface diagnostic only runs at startup"""
        pass

    def initialize(self):
        super().initialize()
        rng = tuple(self._input_data.get("range", (-1.0, 1.0)))
        rows = []
        line_number = 0
        for c in self.isovalues:
            slice_set = slice_isosurface(
                self.field, c, rng,
                nlevels=self._input_data.get("nlevels", 6),
                slices=self._input_data.get("slices", None),
                num_points=self._input_data.get("num_points", 150),
                time=self._owner.clock.start_time)
            self.slice_sets.append(slice_set)
            for line in slice_set:
                prefix = np.array([c, AXES.index(line.axis), line_number])
                rows.append(np.hstack((np.tile(prefix, (len(line), 1)),
                                       line.points)))
                line_number += 1
        table = np.vstack(rows) if rows else np.empty((0, 6))
        with open(self.filename, 'wb') as f:
            if self._input_data.get("output_type", "csv") == "npy":
                np.save(f, table)
            else:
                np.savetxt(f, table, delimiter=",")


Diagnostic.register("particle", ParticleDiagnostic)
Diagnostic.register("clock", ClockDiagnostic)
Diagnostic.register("histories", HistoryDiagnostic)
Diagnostic.register("potential", PotentialDiagnostic)
Diagnostic.register("isosurface", IsosurfaceDiagnostic)
