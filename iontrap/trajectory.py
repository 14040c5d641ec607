"""
Charged particle trajectories in trap potentials

The equation of motion is

.. math::
    \\frac{d\\vec{v}}{dt} = \\frac{q}{m} \\left( -\\nabla\\Phi
    + \\vec{v} \\times \\vec{B} \\right)

and is advanced with a fixed time step. The default method updates the
velocity first and then moves the particle with the new velocity (the
semi-implicit, or symplectic, Euler method). The Boris method is
available for runs with a magnetic field.

The coupling constant passed to the pushers is always the signed
charge-to-mass ratio q/m, and it multiplies the force.
"""
from enum import Enum

import numpy as np
import xarray as xr

from .core import ConfigurationError, NumericalDivergenceError, count_steps
from .fields import CapRingTrap, PaulTrap, QuadrupoleMassFilter


class ParticleState:
    """Position and velocity of one particle at one time

    Parameters
    ----------
    position : array_like
        Position 3-vector.
    velocity : array_like
        Velocity 3-vector.
    time : float
        Simulation time of this state.
    """
    def __init__(self, position, velocity, time=0.0):
        self.position = np.array(position, dtype=np.float64)
        self.velocity = np.array(velocity, dtype=np.float64)
        self.time = time
        if self.position.shape != (3,) or self.velocity.shape != (3,):
            raise ConfigurationError("Position and velocity must be "
                                     "3-vectors")

    def copy(self):
        return ParticleState(self.position, self.velocity, self.time)

    def is_finite(self):
        return bool(np.all(np.isfinite(self.position))
                    and np.all(np.isfinite(self.velocity)))

    def __repr__(self):
        return (f"{self.__class__.__name__}(position={self.position}, "
                f"velocity={self.velocity}, time={self.time})")


class TrapForce:
    """Force per unit charge on a particle in a trap

    The force is the electric field of the trap potential, plus the
    Lorentz term of a uniform magnetic field:
    ``F = -grad(phi) + v x B``.

    Parameters
    ----------
    field : :class:`iontrap.fields.PotentialField`
        The trap potential. A field with only ``x`` and ``y``
        coordinates gives no force along ``z``.
    magnetic_field : array_like, optional
        Uniform magnetic field 3-vector, default is no magnetic field.
    """
    def __init__(self, field, magnetic_field=(0.0, 0.0, 0.0)):
        self.field = field
        self.B = np.array(magnetic_field, dtype=np.float64)
        self._has_magnetic_field = bool(np.any(self.B != 0))

    def electric_field(self, position, time=0.0):
        """Electric field -grad(phi) at `position`"""
        gradient = self.field.gradient(position[0], position[1],
                                       position[2], time)
        E = np.zeros(3)
        E[:len(gradient)] = -gradient
        return E

    def magnetic_field(self, position, time=0.0):
        return self.B

    def __call__(self, position, velocity, time=0.0):
        F = self.electric_field(position, time)
        if self._has_magnetic_field:
            F = F + np.cross(velocity, self.B)
        return F

    def __repr__(self):
        return f"{self.__class__.__name__}({self.field!r}, B={self.B})"


def penning_force(field=None, B0=0.0):
    """Static quadrupole plus a uniform axial magnetic field `B0`"""
    if field is None:
        field = CapRingTrap()
    return TrapForce(field, (0.0, 0.0, B0))


def paul_force(field=None):
    """Time dependent quadrupole, no magnetic field"""
    if field is None:
        field = PaulTrap()
    return TrapForce(field)


def quadrupole_force(field=None):
    """Planar quadrupole force, with no confinement along z"""
    if field is None:
        field = QuadrupoleMassFilter()
    return TrapForce(field)


def euler_step(position, velocity, force, coupling, dt, time):
    """Advance one semi-implicit Euler step, in place

    The velocity is updated with the force at the old position, then the
    position is updated with the new velocity::

        v[n+1] = v[n] + F(x[n], v[n], t[n]) * coupling * dt
        x[n+1] = x[n] + v[n+1] * dt
    """
    velocity[:] = velocity + force(position, velocity, time) * coupling * dt
    position[:] = position + velocity * dt


def boris_step(position, velocity, force, coupling, dt, time):
    """Advance one non-relativistic Boris step, in place

    `force` needs ``electric_field`` and ``magnetic_field`` methods, such
    as a :class:`TrapForce`.
    """
    E = force.electric_field(position, time)
    B = force.magnetic_field(position, time)

    vminus = velocity + dt * E * coupling / 2

    t = dt * B * coupling / 2
    s = 2 * t / (1 + np.dot(t, t))

    vprime = vminus + np.cross(vminus, t)
    vplus = vminus + np.cross(vprime, s)
    velocity[:] = vplus + dt * E * coupling / 2
    position[:] = position + dt * velocity


steppers = {
    "euler": euler_step,
    "boris": boris_step,
}


class IntegratorStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DIVERGED = "diverged"


class TrajectoryIntegrator:
    """Lazy, fixed step integration of a single particle trajectory

    Iterating over the integrator yields :class:`ParticleState` copies at
    the times 0, dt, 2 dt, ... up to the last multiple of dt which is not
    after `end_time`. The first state is the initial state, and the step
    which produces state n+1 evaluates the force at time n dt.

    An integrator can be iterated only once.

    Parameters
    ----------
    state : :class:`ParticleState`
        Initial conditions; the integrator works on a copy.
    force : callable
        ``force(position, velocity, time)`` returning the force per unit
        charge as a 3-vector.
    coupling : float
        Signed charge-to-mass ratio q/m, which multiplies the force.
    dt : float
        Time step, must be positive.
    end_time : float
        Total duration, must not be negative.
    method : {``"euler"``, ``"boris"``}
        Step method, default ``"euler"``.

    Attributes
    ----------
    status : :class:`IntegratorStatus`
        ``IDLE`` until iteration starts, then ``RUNNING``, and finally
        one of ``COMPLETED``, ``CANCELLED`` or ``DIVERGED``.
    num_steps : int
        Number of steps in a complete run.

    Raises
    ------
    NumericalDivergenceError
        During iteration, if the position or velocity stops being finite.
    """
    def __init__(self, state, force, coupling, dt, end_time,
                 method="euler"):
        if not state.is_finite():
            raise ConfigurationError("Initial state must be finite")
        if not np.isfinite(coupling):
            raise ConfigurationError("Coupling must be finite")
        if method not in steppers:
            raise ConfigurationError(f"Unknown step method '{method}'")
        self.num_steps = count_steps(end_time, dt)
        self.dt = dt
        self.end_time = end_time
        self.coupling = coupling
        self.force = force
        self.method = method
        self.status = IntegratorStatus.IDLE
        self._state = ParticleState(state.position, state.velocity, 0.0)
        self._step = steppers[method]

    def __iter__(self):
        if self.status is not IntegratorStatus.IDLE:
            raise RuntimeError("A trajectory can only be integrated once")
        self.status = IntegratorStatus.RUNNING
        return self._run()

    def _run(self):
        last = self._state.copy()
        yield last
        for n in range(self.num_steps):
            if self.status is IntegratorStatus.CANCELLED:
                return
            try:
                self._step(self._state.position, self._state.velocity,
                           self.force, self.coupling, self.dt, n * self.dt)
            except FloatingPointError as err:
                self._diverge(last, n, err)
            if not self._state.is_finite():
                self._diverge(last, n)
            self._state.time = (n + 1) * self.dt
            last = self._state.copy()
            yield last
        if self.status is IntegratorStatus.RUNNING:
            self.status = IntegratorStatus.COMPLETED

    def _diverge(self, last, step, cause=None):
        self.status = IntegratorStatus.DIVERGED
        raise NumericalDivergenceError(
            f"Particle state is not finite after step {step} "
            f"(t = {last.time})", state=last, step=step) from cause

    def cancel(self):
        """Stop the run; iteration ends before the next step"""
        if self.status in (IntegratorStatus.IDLE, IntegratorStatus.RUNNING):
            self.status = IntegratorStatus.CANCELLED


def integrate(state, force, coupling, dt, end_time, method="euler"):
    """Run a complete trajectory and collect it in a dataset

    Parameters are those of :class:`TrajectoryIntegrator`.

    Returns
    -------
    :class:`xarray.Dataset`
        ``position`` and ``velocity`` with dimensions
        ``("time", "component")``.
    """
    states = list(TrajectoryIntegrator(state, force, coupling, dt,
                                       end_time, method))
    data = xr.Dataset(
        {"position": (("time", "component"),
                      np.array([s.position for s in states])),
         "velocity": (("time", "component"),
                      np.array([s.velocity for s in states]))},
        coords={"time": np.array([s.time for s in states]),
                "component": ["x", "y", "z"]})
    data.position.attrs["long_name"] = "Particle Position"
    data.velocity.attrs["long_name"] = "Particle Velocity"
    data.time.attrs["long_name"] = "Time"
    data.attrs["coupling"] = coupling
    data.attrs["method"] = method
    return data
