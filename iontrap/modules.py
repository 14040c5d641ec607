"""
Physics modules for trap simulations

The trap modules share their potential as ``"TrapField:potential"`` and
the force on a unit charge as ``"TrapField:force"``. A
:class:`ChargedParticle` picks up the force, pushes itself with a pusher
tool, and shares its position and velocity with the diagnostics.
"""
import numpy as np

from .core import (ConfigurationError, NumericalDivergenceError,
                   PhysicsModule, Simulation)
from .fields import PotentialField
from .trajectory import paul_force, penning_force, quadrupole_force


class TrapField(PhysicsModule):
    """Base class for the trap potential modules

    Any key of `input_data` which names a parameter of the potential
    (``U0``, ``U1``, ``Omega``, ``r0``, ``z0``) overrides its default.
    The potential is analytic in time, so there is nothing to update.
    """
    field_type = None

    def __init__(self, owner: Simulation, input_data: dict):
        super().__init__(owner, input_data)
        field_class = PotentialField.lookup(self.field_type)
        parameters = {k: v for k, v in input_data.items()
                      if k in field_class.defaults}
        self.field = field_class(**parameters)
        self.force = self.build_force()
        self._resources_to_share = {"TrapField:potential": self.field,
                                    "TrapField:force": self.force}

    def build_force(self):
        raise NotImplementedError

    def update(self):
        pass


class PenningTrapModule(TrapField):
    """Static quadrupole plus an axial magnetic field ``B0``"""
    field_type = "CapRingTrap"

    def build_force(self):
        return penning_force(self.field, self._input_data.get("B0", 0.0))


class PaulTrapModule(TrapField):
    field_type = "PaulTrap"

    def build_force(self):
        return paul_force(self.field)


class QuadrupoleMassFilterModule(TrapField):
    field_type = "QuadrupoleMassFilter"

    def build_force(self):
        return quadrupole_force(self.field)


class ChargedParticle(PhysicsModule):
    """A single charged particle moving in the trap force

    Parameters
    ----------
    owner : :class:`iontrap.core.Simulation`
        The simulation which owns this module
    input_data : dict
        The expected parameters are:

        - ``"position"`` :
            Initial position (3 floats)
        - ``"velocity"`` :
            Initial velocity (3 floats)
        - ``"charge_to_mass"`` :
            Signed charge-to-mass ratio q/m (`float`)
        - ``"pusher"`` :
            Name of the pusher tool, default ``"ForwardEuler"``
        - ``"pusher_name"`` :
            ``custom_name`` of the pusher tool, optional
    """
    def __init__(self, owner: Simulation, input_data: dict):
        super().__init__(owner, input_data)
        self.force = None
        self.position = np.zeros(3)
        self.velocity = np.zeros(3)
        self.charge_to_mass = input_data["charge_to_mass"]

        pusher_type = input_data.get("pusher", "ForwardEuler")
        pusher = owner.find_tool_by_name(pusher_type,
                                         input_data.get("pusher_name"))
        if pusher is None:
            raise ConfigurationError(f"Pusher tool {pusher_type} not found")
        self.push = pusher.push

        self._needed_resources = {"TrapField:force": "force"}
        self._resources_to_share = {"ChargedParticle:position": self.position,
                                    "ChargedParticle:velocity": self.velocity}

    def initialize(self):
        self.position[:] = np.array(self._input_data["position"])
        self.velocity[:] = np.array(self._input_data["velocity"])

    def update(self):
        try:
            self.push(self.position, self.velocity, self.force,
                      self.charge_to_mass)
        except FloatingPointError as err:
            self._diverge(err)
        if not (np.all(np.isfinite(self.position))
                and np.all(np.isfinite(self.velocity))):
            self._diverge()

    def _diverge(self, cause=None):
        raise NumericalDivergenceError(
            "Particle left the computable domain at "
            f"t = {self._owner.clock.time}",
            step=self._owner.clock.this_step) from cause


PhysicsModule.register("PenningTrap", PenningTrapModule)
PhysicsModule.register("PaulTrap", PaulTrapModule)
PhysicsModule.register("QuadrupoleMassFilter", QuadrupoleMassFilterModule)
PhysicsModule.register("ChargedParticle", ChargedParticle)
