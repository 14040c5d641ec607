"""
Analytic trap potentials and their exact gradients

Included potentials:

- Static ring/cap-electrode quadrupole, used for the Penning trap
- Paul trap potential with a sinusoidal drive
- Two dimensional quadrupole mass filter potential

Each potential is written once as a :mod:`sympy` expression. The
potential, its cylindrical form and the partial derivatives are compiled
from that expression with :func:`sympy.lambdify`, so the forces used by
the particle pushers are exact rather than finite difference estimates.
"""
import numpy as np
import sympy as smp
import xarray as xr

from .core import ConfigurationError, DynamicFactory

x, y, z, r, t = smp.symbols("x y z r t", real=True)

COORDINATE_SYMBOLS = {"x": x, "y": y, "z": z}

PARAMETER_SYMBOLS = {
    "U0": smp.Symbol("U0", real=True),
    "U1": smp.Symbol("U1", real=True),
    "Omega": smp.Symbol("Omega", real=True),
    "r0": smp.Symbol("r0", real=True),
    "z0": smp.Symbol("z0", real=True),
}

# the two coordinates spanning a plane of constant x, y or z
PLANE_AXES = {"x": ("y", "z"), "y": ("x", "z"), "z": ("x", "y")}


def symbolic_gradient(expression, coordinates, arguments):
    """Compile the gradient of a symbolic scalar field

    Parameters
    ----------
    expression : :class:`sympy.Expr`
        The scalar field.
    coordinates : sequence of :class:`sympy.Symbol`
        The symbols to differentiate with respect to, in the order of
        the gradient components.
    arguments : sequence of :class:`sympy.Symbol`
        Call signature of the returned function. The coordinates need
        to be the leading arguments.

    Returns
    -------
    function
        ``gradient(*values)`` returns a :class:`numpy.ndarray` whose
        first axis holds the partial derivatives, broadcast to the
        shape of the coordinate values.

    Raises
    ------
    FloatingPointError
        From the returned function, if a partial derivative is not
        finite at the requested point.
    """
    partials = [smp.lambdify(arguments, smp.diff(expression, c), "numpy")
                for c in coordinates]
    num_coordinates = len(coordinates)

    def gradient(*values):
        values = [np.asarray(v, dtype=np.float64) for v in values]
        with np.errstate(invalid="raise", divide="raise", over="raise"):
            components = [f(*values) for f in partials]
        # constant derivatives come back as scalars
        components = np.broadcast_arrays(*components,
                                         *values[:num_coordinates])
        result = np.array(components[:num_coordinates], dtype=np.float64)
        if not np.all(np.isfinite(result)):
            raise FloatingPointError("Gradient is not finite at the "
                                     "requested point")
        return result

    return gradient


def evaluate_on_plane(function, axis, offset, first, second):
    """Evaluate ``function(x, y, z)`` on a plane of constant `axis`

    Parameters
    ----------
    function : callable
        Vectorised scalar function of x, y and z.
    axis : {``"x"``, ``"y"``, ``"z"``}
        The coordinate which is held fixed.
    offset : float
        Value of the fixed coordinate.
    first, second : :class:`numpy.ndarray`
        Sample points along the two in-plane axes, in the order given by
        ``PLANE_AXES[axis]``.

    Returns
    -------
    :class:`numpy.ndarray`
        Array of shape ``(len(first), len(second))``.
    """
    if axis not in PLANE_AXES:
        raise ConfigurationError(f"Unknown axis '{axis}'")
    A, B = np.meshgrid(first, second, indexing="ij")
    coords = {axis: offset,
              PLANE_AXES[axis][0]: A,
              PLANE_AXES[axis][1]: B}
    values = function(coords["x"], coords["y"], coords["z"])
    return np.broadcast_to(values, A.shape)


class PotentialField(DynamicFactory):
    """Base class for the analytic trap potentials

    Subclasses provide the symbolic :meth:`expression` of the potential
    in terms of ``x``, ``y``, ``z``, ``t`` and the parameter symbols
    named in :attr:`defaults`. Instances are immutable: to change a
    parameter, build a new field with :meth:`with_parameters`.

    Parameters
    ----------
    **parameters
        Values for any of the parameters in :attr:`defaults`.

    Attributes
    ----------
    defaults : `dict`
        Parameter names and default values for this potential.
    coordinates : `tuple` of `str`
        Coordinates the potential depends on. The gradient has one
        component per coordinate.
    axially_symmetric : `bool`
        Whether :meth:`cylindrical` is available.
    parameters : `dict`
        Parameter values of this instance.

    Raises
    ------
    ConfigurationError
        If a parameter is unknown or not finite, or if a geometric scale
        is zero.
    """
    _factory_type_name = "Potential Field"
    _registry = {}

    defaults = {}
    coordinates = ("x", "y", "z")
    axially_symmetric = False

    def __init__(self, **parameters):
        unknown = set(parameters) - set(self.defaults)
        if unknown:
            raise ConfigurationError(
                f"Unknown parameters for {self.__class__.__name__}: "
                f"{sorted(unknown)}")
        self.parameters = {**self.defaults, **parameters}
        for name, value in self.parameters.items():
            if not np.isfinite(value):
                raise ConfigurationError(f"Parameter {name} must be "
                                         f"finite, got {value}")
        for name in ("r0", "z0"):
            if name in self.parameters and self.parameters[name] == 0:
                raise ConfigurationError(f"Trap dimension {name} must be "
                                         "nonzero")
        self._values = [float(self.parameters[name])
                        for name in self.defaults]
        self._functions = self._compiled()

    @classmethod
    def expression(cls):
        """Symbolic form of the potential"""
        raise NotImplementedError

    @classmethod
    def _compiled(cls):
        # Compile once per class; the parameters are call arguments
        if "_compiled_functions" not in cls.__dict__:
            expression = cls.expression()
            params = [PARAMETER_SYMBOLS[name] for name in cls.defaults]
            arguments = [x, y, z, t] + params
            coords = [COORDINATE_SYMBOLS[c] for c in cls.coordinates]
            functions = {
                "potential": smp.lambdify(arguments, expression, "numpy"),
                "gradient": symbolic_gradient(expression, coords,
                                              arguments),
            }
            if cls.axially_symmetric:
                functions["cylindrical"] = smp.lambdify(
                    [z, r, t] + params,
                    expression.subs({x: r, y: 0}), "numpy")
            cls._compiled_functions = functions
        return cls._compiled_functions

    def with_parameters(self, **changes):
        """Return a new field of the same kind with some parameters
        replaced"""
        return self.__class__(**{**self.parameters, **changes})

    @property
    def time_dependent(self):
        return "Omega" in self.parameters

    @property
    def drive_period(self):
        """Period 2π/Ω of the drive voltage"""
        if not self.time_dependent:
            raise AttributeError(f"{self.__class__.__name__} has no drive "
                                 "frequency")
        if self.parameters["Omega"] == 0:
            raise ConfigurationError("Drive frequency is zero")
        return 2 * np.pi / self.parameters["Omega"]

    def potential(self, x, y, z=0.0, t=0.0):
        """Evaluate the potential

        Parameters
        ----------
        x, y, z : float or :class:`numpy.ndarray`
            Position. Arrays are broadcast against each other.
        t : float
            Time, ignored by static potentials.

        Returns
        -------
        float or :class:`numpy.ndarray`
        """
        value = self._functions["potential"](x, y, z, t, *self._values)
        shape = np.broadcast(np.asarray(x), np.asarray(y),
                             np.asarray(z)).shape
        if shape:
            return np.broadcast_to(value, shape)
        return value

    def __call__(self, x, y, z=0.0, t=0.0):
        return self.potential(x, y, z, t)

    def gradient(self, x, y, z=0.0, t=0.0):
        """Exact gradient of the potential

        Returns
        -------
        :class:`numpy.ndarray`
            One component per entry of :attr:`coordinates`, along the
            first axis.

        Raises
        ------
        FloatingPointError
            If the gradient is not finite at the requested point.
        """
        return self._functions["gradient"](x, y, z, t, *self._values)

    def cylindrical(self, z, r, t=0.0):
        """Evaluate the potential as a function of the axial coordinate
        `z` and the radius `r`"""
        if not self.axially_symmetric:
            raise NotImplementedError(f"{self.__class__.__name__} has no "
                                      "cylindrical form")
        return self._functions["cylindrical"](z, r, t, *self._values)

    def sample_plane(self, axis, offset, first_range=(-1, 1),
                     second_range=None, num_points=150, t=0.0):
        """Sample the potential on a plane of constant `axis`

        Returns
        -------
        :class:`xarray.DataArray`
            Potential with the two in-plane coordinates as dimensions.
        """
        if second_range is None:
            second_range = first_range
        names = PLANE_AXES.get(axis)
        if names is None:
            raise ConfigurationError(f"Unknown axis '{axis}'")
        first = np.linspace(first_range[0], first_range[1], num_points)
        second = np.linspace(second_range[0], second_range[1], num_points)
        values = evaluate_on_plane(
            lambda x, y, z: self.potential(x, y, z, t),
            axis, offset, first, second)
        data = xr.DataArray(np.array(values), dims=names,
                            coords={names[0]: first, names[1]: second})
        data.attrs["long_name"] = "Potential"
        data.attrs["plane_axis"] = axis
        data.attrs["plane_offset"] = offset
        data.attrs["time"] = t
        return data

    def sample_cylindrical(self, z_values, r_values, t=0.0):
        """Sample the cylindrical form of the potential on a (z, r) grid

        Returns
        -------
        :class:`xarray.DataArray`
        """
        Z, R = np.meshgrid(z_values, r_values, indexing="ij")
        values = np.broadcast_to(self.cylindrical(Z, R, t), Z.shape)
        data = xr.DataArray(np.array(values), dims=("z", "r"),
                            coords={"z": z_values, "r": r_values})
        data.z.attrs["long_name"] = "Axial position"
        data.r.attrs["long_name"] = "Radius"
        data.attrs["long_name"] = "Potential"
        data.attrs["time"] = t
        return data

    def __repr__(self):
        return f"{self.__class__.__name__}({self.parameters})"


class CapRingTrap(PotentialField):
    """Static quadrupole of a ring electrode between two cap electrodes

    .. math::
        \\Phi(x, y, z) = \\frac{U_0}{r_0^2 + 2 z_0^2} (2z^2 - x^2 - y^2)
    """
    defaults = {"U0": 1.0, "r0": 1.0, "z0": 1.0}
    axially_symmetric = True

    @classmethod
    def expression(cls):
        U0, r0, z0 = (PARAMETER_SYMBOLS[k] for k in ("U0", "r0", "z0"))
        return U0 / (r0**2 + 2 * z0**2) * (2 * z**2 - x**2 - y**2)


class PaulTrap(PotentialField):
    """Ring/cap quadrupole driven by a sinusoidal voltage

    .. math::
        \\Phi_p(x, y, z, t) = \\frac{U_0 - U_1 \\cos(\\Omega t)}
        {r_0^2 + 2 z_0^2} (2z^2 - x^2 - y^2)
    """
    defaults = {"U0": 0.2, "U1": 6.0, "Omega": 5.0, "r0": 1.0, "z0": 1.0}
    axially_symmetric = True

    @classmethod
    def expression(cls):
        U0, U1, Omega, r0, z0 = (PARAMETER_SYMBOLS[k] for k in
                                 ("U0", "U1", "Omega", "r0", "z0"))
        return ((U0 - U1 * smp.cos(Omega * t)) / (r0**2 + 2 * z0**2)
                * (2 * z**2 - x**2 - y**2))


class QuadrupoleMassFilter(PotentialField):
    """Two dimensional quadrupole of a mass filter, no z dependence

    .. math::
        \\phi_4(x, y, t) = \\frac{U_0 - U_1 \\cos(\\Omega t)}{2 r_0^2}
        (x^2 - y^2)
    """
    defaults = {"U0": 0.5, "U1": 10.0, "Omega": 5.0, "r0": 1.0}
    coordinates = ("x", "y")

    @classmethod
    def expression(cls):
        U0, U1, Omega, r0 = (PARAMETER_SYMBOLS[k] for k in
                             ("U0", "U1", "Omega", "r0"))
        return ((U0 - U1 * smp.cos(Omega * t)) / (2 * r0**2)
                * (x**2 - y**2))


PotentialField.register("CapRingTrap", CapRingTrap)
PotentialField.register("PaulTrap", PaulTrap)
PotentialField.register("QuadrupoleMassFilter", QuadrupoleMassFilter)
