"""
Several subclasses of the :class:`iontrap.core.ComputeTool` class for
common scenarios

Included stock subclasses:

- Charged particle pusher using the semi-implicit Euler method
- Charged particle pusher using the Boris method
- Equipotential surface slicer

"""
from .core import ComputeTool, Simulation
from .trajectory import boris_step, euler_step
from .isosurface import slice_isosurface


class ForwardEuler(ComputeTool):
    """
    Push charged particles with the semi-implicit Euler method

    The velocity is advanced with the force at the current position and
    time, and then the position is advanced with the new velocity. See
    :func:`iontrap.trajectory.euler_step`.

    Parameters
    ----------
    owner : Simulation
        The :class:`iontrap.core.Simulation` object that contains this
        object
    input_data : dict
        There are no custom configuration options for this tool

    Attributes
    ----------
    dt : float
        The time step, taken from the simulation clock
    """
    def __init__(self, owner: Simulation, input_data: dict):
        super().__init__(owner, input_data)
        self.dt = None

    def initialize(self):
        self.dt = self._owner.clock.dt

    def push(self, position, velocity, force, coupling):
        """
        Update the position and velocity of a charged particle, in place

        Parameters
        ----------
        position : :class:`numpy.ndarray`
            The position of the particle as a vector
        velocity : :class:`numpy.ndarray`
            The velocity of the particle as a vector
        force : callable
            ``force(position, velocity, time)``, the force per unit
            charge
        coupling : float
            The charge-to-mass ratio of the particle
        """
        euler_step(position, velocity, force, coupling, self.dt,
                   self._owner.clock.time)


class BorisPush(ComputeTool):
    """
    Calculate charged particle motion in electric and magnetic fields

    This is a non-relativistic implementation of the Boris push
    algorithm. See :func:`iontrap.trajectory.boris_step`.

    Parameters
    ----------
    owner : Simulation
        The :class:`iontrap.core.Simulation` object that contains this
        object
    input_data : dict
        There are no custom configuration options for this tool
    """
    def __init__(self, owner: Simulation, input_data: dict):
        super().__init__(owner, input_data)
        self.dt = None

    def initialize(self):
        self.dt = self._owner.clock.dt

    def push(self, position, velocity, force, coupling):
        """
        Update the position and velocity of a charged particle, in place

        Parameters
        ----------
        position : :class:`numpy.ndarray`
            The position of the particle as a vector
        velocity : :class:`numpy.ndarray`
            The velocity of the particle as a vector
        force : :class:`iontrap.trajectory.TrapForce`
            Provides the electric and magnetic fields at the particle
        coupling : float
            The charge-to-mass ratio of the particle
        """
        boris_step(position, velocity, force, coupling, self.dt,
                   self._owner.clock.time)


class IsosurfaceSlicer(ComputeTool):
    """
    Approximate equipotential surfaces with contour lines

    Parameters
    ----------
    owner : Simulation
        The :class:`iontrap.core.Simulation` object that contains this
        object
    input_data : dict
        Dictionary of configuration options, all optional.
        The expected parameters are:

        - ``"nlevels"`` :
            Number of slicing planes per axis (`int`), default 6
        - ``"num_points"`` :
            Number of samples per in-plane axis (`int`), default 150
        - ``"slices"`` :
            Mapping from axis name to color (`dict`), default is all
            three axes in black
    """
    def __init__(self, owner: Simulation, input_data: dict):
        super().__init__(owner, input_data)
        self.nlevels = input_data.get("nlevels", 6)
        self.num_points = input_data.get("num_points", 150)
        self.slices = input_data.get("slices", None)

    def slice(self, field, c=0, xrng=(-1, 1), yrng=None, zrng=None,
              time=None):
        """
        Slice the surface ``field == c``

        Returns
        -------
        :class:`iontrap.isosurface.SliceSet`
        """
        return slice_isosurface(field, c, xrng, yrng, zrng,
                                nlevels=self.nlevels, slices=self.slices,
                                num_points=self.num_points, time=time)


ComputeTool.register("ForwardEuler", ForwardEuler)
ComputeTool.register("BorisPush", BorisPush)
ComputeTool.register("IsosurfaceSlicer", IsosurfaceSlicer)
