"""Building simulations from input files"""
import qtoml as toml

from .core import Simulation


def construct_simulation_from_toml(filename) -> Simulation:
    """Read a run configuration from a ``toml`` file

    Parameters
    ----------
    filename : `str` or :class:`pathlib.Path`
        Input file. Its ``[Clock]``, ``[Tools]``, ``[PhysicsModules]``
        and ``[Diagnostics]`` tables become the sections described in
        :class:`iontrap.core.Simulation`.

    Returns
    -------
    :class:`iontrap.core.Simulation`
        Not yet prepared; call ``run()`` to start it.
    """
    with open(filename) as f:
        return Simulation(toml.load(f))
