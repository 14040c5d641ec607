"""
Core base classes of the iontrapPy framework

A run is described by a nested dictionary (usually read from a ``toml``
file, see :mod:`iontrap.constructors`). The :class:`Simulation` builds
the compute tools, physics modules and diagnostics named in that
dictionary from their registries, and drives them with a
:class:`SimulationClock`.

Notes
-----
The trap potentials and the equipotential slicer do not need a
simulation at all; they can be used directly from
:mod:`iontrap.fields`, :mod:`iontrap.trajectory` and
:mod:`iontrap.isosurface`.
"""
from pathlib import Path
from abc import ABC, abstractmethod
import numpy as np
import warnings


class ConfigurationError(ValueError):
    """Raised when a field, clock, integrator or slicer is configured
    with parameters that cannot be evaluated (for example a zero trap
    radius, which would divide by zero)."""


class NumericalDivergenceError(RuntimeError):
    """Raised when a particle position or velocity becomes non-finite

    Parameters
    ----------
    message : `str`
        Description of the failure.
    state : :class:`iontrap.trajectory.ParticleState`, optional
        The last state which was still finite.
    step : `int`, optional
        The index of the step which produced the non-finite values.
    """
    def __init__(self, message, state=None, step=None):
        super().__init__(message)
        self.state = state
        self.step = step


class Simulation:
    """Owner and driver of a trap simulation

    Parameters
    ----------
    input_data : `dict`
        Run configuration, one sub-dictionary per section:

        ``"Clock"``
            Parameters of the :class:`SimulationClock`.
        ``"Tools"`` : `dict` [`str`, `dict` or `list`], optional
            :class:`ComputeTool` registry names mapped to their
            parameters. A list of dictionaries creates several tools of
            one type, told apart by their ``"custom_name"``.
        ``"PhysicsModules"`` : `dict` [`str`, `dict`], optional
            :class:`PhysicsModule` registry names mapped to their
            parameters, for example a trap and a charged particle.
        ``"Diagnostics"`` : `dict` [`str`, `dict` or `list`], optional
            :class:`Diagnostic` registry names mapped to their
            parameters. Keys which are not registry names are defaults
            for every diagnostic, such as ``"directory"`` (default
            ``"default_output"``). A diagnostic without a ``"filename"``
            writes to its registry name followed by a counter.

    Attributes
    ----------
    physics_modules : `list` of :class:`PhysicsModule`
    diagnostics : `list` of :class:`Diagnostic`
    compute_tools : `list` of :class:`ComputeTool`
    clock : :class:`SimulationClock`, None
        Created by :meth:`prepare_simulation`.
    all_shared_resources : `dict`
        Everything the physics modules have shared, by resource name.

    Examples
    --------
    A particle in a Penning trap, pushed with the semi-implicit Euler
    method and recorded every step::

        sim = Simulation({
            "Clock": {"end_time": 20, "dt": 0.1},
            "Tools": {"ForwardEuler": {}},
            "PhysicsModules": {
                "PenningTrap": {"B0": 0.6},
                "ChargedParticle": {"position": [0, 0, -1],
                                    "velocity": [0.01, 0.01, 0.1],
                                    "charge_to_mass": 0.5}},
            "Diagnostics": {"particle": {"filename": "x.csv"}}})
        sim.run()
    """

    def __init__(self, input_data: dict):
        self.physics_modules = []
        self.compute_tools = []
        self.diagnostics = []
        self.clock = None
        self.all_shared_resources = {}

        self.input_data = input_data
        for section in ("Tools", "PhysicsModules", "Diagnostics"):
            self.input_data.setdefault(section, {})

    def run(self):
        """Prepare, step until the clock runs out, then finalize"""
        print("Simulation is initializing")
        self.prepare_simulation()
        print("Initialization complete")

        print("Simulation is started")
        while self.clock.is_running():
            self.fundamental_cycle()

        self.finalize_simulation()
        print("Simulation complete")

    def fundamental_cycle(self):
        """One pass of the main loop

        The diagnostics see the state at the current time, then the
        modules advance it by one step and the clock moves on.
        """
        for d in self.diagnostics:
            d.diagnose()
        for m in self.physics_modules:
            m.reset()
        for m in self.physics_modules:
            m.update()
        self.clock.advance()

    def prepare_simulation(self):
        """Build everything named in the input and initialize it

        Tools are built before the modules which look them up, and the
        modules share their resources before anything inspects them.
        """
        print("Initializing Simulation Clock...")
        self.read_clock_from_input()
        print("Reading Tools...")
        self.read_tools_from_input()
        print("Reading PhysicsModules...")
        self.read_modules_from_input()
        print("Reading Diagnostics...")
        self.read_diagnostics_from_input()

        print("Initializing Tools...")
        for tool in self.compute_tools:
            tool.initialize()

        print("Initializing PhysicsModules...")
        for m in self.physics_modules:
            m.exchange_resources()
        for m in self.physics_modules:
            m.inspect_resources()
        for m in self.physics_modules:
            m.initialize()

        print("Initializing Diagnostics...")
        for d in self.diagnostics:
            d.inspect_resources()
        for d in self.diagnostics:
            d.initialize()

    def finalize_simulation(self):
        """Let every diagnostic record the final state and write out"""
        for d in self.diagnostics:
            d.finalize()

    def read_clock_from_input(self):
        self.clock = SimulationClock(self, self.input_data["Clock"])

    def read_tools_from_input(self):
        for tool_type, entries in self.input_data["Tools"].items():
            tool_class = ComputeTool.lookup(tool_type)
            for params in wrap_item_in_list(entries):
                params["type"] = tool_type
                self.compute_tools.append(tool_class(owner=self,
                                                     input_data=params))

    def read_modules_from_input(self):
        for module_name, params in self.input_data["PhysicsModules"].items():
            print(f"Loading physics module: {module_name}...")
            module_class = PhysicsModule.lookup(module_name)
            params["name"] = module_name
            self.physics_modules.append(module_class(owner=self,
                                                     input_data=params))

    def read_diagnostics_from_input(self):
        diagnostics, default_params = self.parse_diagnostic_input_dictionary()
        default_params.setdefault("directory", "default_output")

        for diag_type, entries in make_values_into_lists(diagnostics).items():
            diagnostic_class = Diagnostic.lookup(diag_type)
            for file_num, params in enumerate(entries):
                params["type"] = diag_type
                params = self.combine_dictionaries(default_params, params)
                if "filename" not in params:
                    extension = params.get("output_type", "out")
                    params["filename"] = f"{diag_type}{file_num}.{extension}"
                params["filename"] = str(Path(params["directory"])
                                         / Path(params["filename"]))
                self.diagnostics.append(
                    diagnostic_class(owner=self, input_data=params))

    def combine_dictionaries(self, defaults, custom):
        # entries of a single diagnostic win over the section defaults
        return {**defaults, **custom}

    def parse_diagnostic_input_dictionary(self):
        """Split the ``Diagnostics`` section into diagnostics and shared
        default parameters"""
        section = self.input_data["Diagnostics"]
        diagnostics = {k: v for k, v in section.items()
                       if Diagnostic.is_valid_name(k)}
        default_params = {k: v for k, v in section.items()
                          if not Diagnostic.is_valid_name(k)}
        return diagnostics, default_params

    def find_tool_by_name(self, tool_name: str, custom_name: str = None):
        """Return the unique tool with this type and ``custom_name``, or
        None"""
        tools = [t for t in self.compute_tools if t.name == tool_name
                 and t.custom_name == custom_name]
        if len(tools) == 1:
            return tools[0]
        return None

    def gather_shared_resources(self, shared):
        for k, v in shared.items():
            if k in self.all_shared_resources:
                warnings.warn(f"Shared resource {k} has been overwritten")
            self.all_shared_resources[k] = v

    def __repr__(self):
        return f"{self.__class__.__name__}({self.input_data})"


class DynamicFactory(ABC):
    """Registry of named subclasses

    Each direct subclass keeps its own ``_registry`` dictionary, so the
    same name can be used for, say, a physics module and a potential.
    """

    @property
    @abstractmethod
    def _factory_type_name(self):
        """Human readable name of the registry, used in errors"""
        pass

    @property
    @abstractmethod
    def _registry(self):
        """Dictionary from registered name to subclass"""
        pass

    @classmethod
    def register(cls, name_to_register: str, class_to_register,
                 override=False):
        """Add a subclass to the registry

        Raises
        ------
        ValueError
            If the name is taken and `override` is not set.
        TypeError
            If `class_to_register` does not derive from this class.
        """
        if name_to_register in cls._registry and not override:
            raise ValueError(f"{cls._factory_type_name} "
                             f"'{name_to_register}' already registered")
        if not issubclass(class_to_register, cls):
            raise TypeError(f"{class_to_register} is not a subclass of {cls}")
        cls._registry[name_to_register] = class_to_register

    @classmethod
    def lookup(cls, name: str):
        """Return the subclass registered under `name`

        Raises
        ------
        KeyError
            If nothing is registered under `name`.
        """
        if name not in cls._registry:
            raise KeyError(f"{cls._factory_type_name} '{name}' not found "
                           "in registry")
        return cls._registry[name]

    @classmethod
    def is_valid_name(cls, name: str):
        return name in cls._registry


def attach_resources(component, kind):
    """Bind the shared resources a module or diagnostic asked for

    Each entry ``{shared_name: attribute}`` of
    ``component._needed_resources`` sets ``component.<attribute>`` to the
    shared object. Missing resources only produce a warning, and the
    attribute keeps its value.
    """
    shared = component._owner.all_shared_resources
    for shared_name, attribute in component._needed_resources.items():
        if shared_name in shared:
            setattr(component, attribute, shared[shared_name])
        else:
            warnings.warn(f"{kind} {component.__class__.__name__} can't "
                          f"find needed resource {shared_name}")


class PhysicsModule(DynamicFactory):
    """Base class for the parts of a run which change in time

    Trap modules share the potential and the force, particle modules
    share their position and velocity.

    Parameters
    ----------
    owner : :class:`Simulation`
        The simulation this module belongs to.
    input_data : `dict`
        The module's section of the run configuration, plus its
        registry name under ``"name"``.

    Attributes
    ----------
    _needed_resources : `dict`
        ``{shared_name: attribute}``; for example
        ``{"TrapField:force": "force"}`` makes the shared force
        available as ``self.force``.
    _resources_to_share : `dict`
        ``{shared_name: object}`` handed to the simulation.

    Notes
    -----
    Shared arrays are references. Update them in place
    (``array[:] = ...``) so every holder sees the new values.
    """
    _factory_type_name = "Physics Module"
    _registry = {}

    def __init__(self, owner: Simulation, input_data: dict):
        self._owner = owner
        self._input_data = input_data
        self._resources_to_share = {}
        self._needed_resources = {}

    def exchange_resources(self):
        """Hand ``_resources_to_share`` to the owning simulation"""
        for k in self._resources_to_share:
            print(f"Module {self.__class__.__name__} is sharing {k}")
        self._owner.gather_shared_resources(self._resources_to_share)

    def inspect_resources(self):
        attach_resources(self, "Module")

    def update(self):
        """Advance the module by one time step"""
        raise NotImplementedError

    def reset(self):
        """Called each step before any module updates"""
        pass

    def initialize(self):
        """Called once, after all resources have been exchanged"""
        pass

    def __repr__(self):
        return f"{self.__class__.__name__}({self._input_data})"


class ComputeTool(DynamicFactory):
    """Base class for numerical methods shared between modules

    Parameters
    ----------
    owner : :class:`Simulation`
        The simulation this tool belongs to.
    input_data : `dict`
        The tool's configuration. ``"type"`` is its registry name.

    Attributes
    ----------
    name : `str`
        Registry name of the tool.
    custom_name : `str`, None
        Distinguishes several tools of one type in the same run.
    """

    _factory_type_name = "Compute Tool"
    _registry = {}

    def __init__(self, owner: Simulation, input_data: dict):
        self._owner = owner
        self._input_data = input_data
        self.name = input_data["type"]
        self.custom_name = input_data.get("custom_name", None)

    def initialize(self):
        """Called once the clock exists, before the modules initialize"""
        pass

    def __repr__(self):
        return f"{self.__class__.__name__}({self._input_data})"


def count_steps(duration, dt):
    """Number of whole time steps of size `dt` which fit in `duration`

    A ratio within a few ulps of an integer is rounded to that integer,
    so that ``count_steps(20, 0.1) == 200``. Anything further below an
    integer is floored, so the last step never passes `duration`.

    Raises
    ------
    ConfigurationError
        If `dt` is not positive or `duration` is negative.
    """
    if not np.isfinite(dt) or dt <= 0:
        raise ConfigurationError(f"Time step must be positive, got {dt}")
    if not np.isfinite(duration) or duration < 0:
        raise ConfigurationError(
            f"Duration must be non-negative, got {duration}")
    ratio = duration / dt
    nearest = np.rint(ratio)
    if np.isclose(ratio, nearest, rtol=4 * np.finfo(float).eps, atol=0):
        return int(nearest)
    return int(np.floor(ratio))


class SimulationClock:
    """
    Time keeping for a :class:`Simulation`

    Parameters
    ----------
    owner : :class:`Simulation`
        The simulation this clock belongs to.
    input_data : `dict`
        The expected parameters are:

        - ``"start_time"`` :
            `float`, default ``0``
        - ``"end_time"`` :
            `float`
        - ``"num_steps"`` | ``"dt"`` :
            Number of steps (`int`, at least 1) | step size (`float`).
            A `dt` which does not divide the run stops at the last
            whole step before ``end_time``.
        - ``"print_time"`` :
            Print the time after every step, default ``False``

    Attributes
    ----------
    time : `float`
        ``start_time + this_step * dt``; computed from the step count so
        that rounding does not accumulate.
    this_step : `int`
    num_steps : `int`
    dt : `float`
    """

    def __init__(self, owner: Simulation, input_data: dict):
        self._owner = owner
        self._input_data = input_data
        self.start_time = input_data.get("start_time", 0)
        self.end_time = input_data["end_time"]
        self.print_time = input_data.get("print_time", False)
        self.this_step = 0
        self.time = self.start_time

        duration = self.end_time - self.start_time
        if "num_steps" in input_data:
            self.num_steps = input_data["num_steps"]
            if self.num_steps < 1:
                raise ConfigurationError("Clock needs at least one step")
            self.dt = duration / self.num_steps
        elif "dt" in input_data:
            self.dt = input_data["dt"]
            self.num_steps = count_steps(duration, self.dt)
        else:
            raise KeyError("Clock configuration needs num_steps or dt")

    def advance(self):
        self.this_step += 1
        self.time = self.start_time + self.dt * self.this_step
        if self.print_time:
            print(f"t = {self.time:0.4e}")

    def is_running(self):
        return self.this_step < self.num_steps

    def __repr__(self):
        return f"{self.__class__.__name__}({self._input_data})"


class Diagnostic(DynamicFactory):
    """Base class for everything which records or writes run output

    Parameters
    ----------
    owner : :class:`Simulation`
        The simulation this diagnostic belongs to.
    input_data : `dict`
        The diagnostic's configuration merged with the section defaults.
        ``"directory"`` and ``"filename"`` are always present.

    Attributes
    ----------
    _needed_resources : `dict`
        ``{shared_name: attribute}``, as for :class:`PhysicsModule`.
    """

    _factory_type_name = "Diagnostic"
    _registry = {}

    def __init__(self, owner: Simulation, input_data: dict):
        self._owner = owner
        self._input_data = input_data
        self._needed_resources = {}

    def inspect_resources(self):
        attach_resources(self, "Diagnostic")

    def diagnose(self):
        """Record the current state; called at the top of every step"""
        raise NotImplementedError

    def initialize(self):
        """Create the output directory

        Subclasses which override this call ``super().initialize()``.
        """
        Path(self._input_data["directory"]).mkdir(parents=True,
                                                  exist_ok=True)

    def finalize(self):
        """Called once after the last step"""
        pass

    def __repr__(self):
        return f"{self.__class__.__name__}({self._input_data})"


def wrap_item_in_list(item):
    if type(item) is list:
        return item
    return [item]


def make_values_into_lists(dictionary):
    return {k: wrap_item_in_list(v) for k, v in dictionary.items()}
