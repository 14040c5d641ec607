"""Tests for iontrap/trajectory.py"""
import pytest
import numpy as np
from iontrap.core import ConfigurationError, NumericalDivergenceError
from iontrap.fields import CapRingTrap, PaulTrap
from iontrap.trajectory import (IntegratorStatus, ParticleState,
                                TrajectoryIntegrator, TrapForce, boris_step,
                                euler_step, integrate, paul_force,
                                penning_force, quadrupole_force)


def zero_force(position, velocity, time):
    return np.zeros(3)


@pytest.fixture(name='penning_state')
def penning_state_fixt():
    return ParticleState([0.0, 0.0, -1.0], [0.01, 0.01, 0.1])


def reference_penning(num_steps, dt, coupling, B0):
    """Semi-implicit Euler written out for the default ring/cap trap"""
    x = np.array([0.0, 0.0, -1.0])
    v = np.array([0.01, 0.01, 0.1])
    B = np.array([0.0, 0.0, B0])
    positions = [x.copy()]
    velocities = [v.copy()]
    for _ in range(num_steps):
        E = np.array([2 * x[0], 2 * x[1], -4 * x[2]]) / 3
        v = v + (E + np.cross(v, B)) * coupling * dt
        x = x + v * dt
        positions.append(x.copy())
        velocities.append(v.copy())
    return np.array(positions), np.array(velocities)


def test_particle_state_requires_vectors():
    with pytest.raises(ConfigurationError):
        ParticleState([0, 0], [0, 0, 0])
    with pytest.raises(ConfigurationError):
        ParticleState([0, 0, 0], [[0, 0, 0]])


def test_particle_state_copy_is_independent():
    state = ParticleState([1, 2, 3], [4, 5, 6], 0.5)
    other = state.copy()
    other.position[0] = 10
    assert state.position[0] == 1
    assert other.time == 0.5


def test_zero_force_gives_straight_line():
    state = ParticleState([1.0, -1.0, 0.5], [0.2, 0.0, -0.1])
    states = list(TrajectoryIntegrator(state, zero_force, 1.0, 0.1, 1.0))
    assert len(states) == 11
    for n, s in enumerate(states):
        assert np.array_equal(s.velocity, state.velocity)
        assert np.allclose(s.position, state.position + n * 0.1 * state.velocity)


def test_zero_coupling_leaves_state_unchanged():
    state = ParticleState([0.3, -0.2, 0.5], [0.0, 0.0, 0.0])
    integrator = TrajectoryIntegrator(state, penning_force(B0=0.6),
                                      0.0, 0.1, 20)
    for s in integrator:
        assert np.array_equal(s.position, [0.3, -0.2, 0.5])
        assert np.array_equal(s.velocity, [0.0, 0.0, 0.0])
    assert integrator.status is IntegratorStatus.COMPLETED


def test_euler_step_updates_velocity_first():
    position = np.array([1.0, 0.0, 0.0])
    velocity = np.array([0.0, 0.0, 0.0])

    def force(x, v, t):
        return np.array([-x[0], 0.0, 0.0])

    euler_step(position, velocity, force, 2.0, 0.5, 0.0)
    # v = 0 + (-1) * 2 * 0.5, then x = 1 + v * 0.5
    assert np.array_equal(velocity, [-1.0, 0.0, 0.0])
    assert np.array_equal(position, [0.5, 0.0, 0.0])


def test_force_is_evaluated_at_start_of_step():
    times = []

    def force(x, v, t):
        times.append(t)
        return np.zeros(3)

    state = ParticleState([0, 0, 0], [0, 0, 0])
    states = list(TrajectoryIntegrator(state, force, 1.0, 0.25, 1.0))
    assert np.allclose(times, [0.0, 0.25, 0.5, 0.75])
    assert np.allclose([s.time for s in states],
                       [0.0, 0.25, 0.5, 0.75, 1.0])


def test_penning_trajectory_matches_reference(penning_state):
    force = penning_force(B0=0.6)
    states = list(TrajectoryIntegrator(penning_state, force, 0.5, 0.1, 20))
    positions, velocities = reference_penning(200, 0.1, 0.5, 0.6)
    assert len(states) == 201
    assert np.isclose(states[-1].time, 20)
    assert np.allclose([s.position for s in states], positions,
                       rtol=1e-8, atol=1e-12)
    assert np.allclose([s.velocity for s in states], velocities,
                       rtol=1e-8, atol=1e-12)
    assert all(s.is_finite() for s in states)


def test_trajectory_is_deterministic(penning_state):
    force = penning_force(B0=0.6)
    first = integrate(penning_state, force, 0.5, 0.1, 20)
    second = integrate(penning_state, force, 0.5, 0.1, 20)
    assert np.array_equal(first.position.values, second.position.values)
    assert np.array_equal(first.velocity.values, second.velocity.values)


def test_integrator_does_not_modify_initial_state(penning_state):
    list(TrajectoryIntegrator(penning_state, penning_force(B0=0.6),
                              0.5, 0.1, 1.0))
    assert np.array_equal(penning_state.position, [0.0, 0.0, -1.0])
    assert np.array_equal(penning_state.velocity, [0.01, 0.01, 0.1])


def test_last_state_is_last_whole_step():
    state = ParticleState([0, 0, 0], [1, 0, 0])
    states = list(TrajectoryIntegrator(state, zero_force, 1.0, 0.1, 0.25))
    assert len(states) == 3
    assert np.isclose(states[-1].time, 0.2)


def test_zero_duration_yields_initial_state():
    state = ParticleState([1, 2, 3], [0, 0, 0])
    integrator = TrajectoryIntegrator(state, zero_force, 1.0, 0.1, 0.0)
    states = list(integrator)
    assert len(states) == 1
    assert np.array_equal(states[0].position, [1, 2, 3])
    assert integrator.status is IntegratorStatus.COMPLETED


@pytest.mark.parametrize("force", [penning_force(B0=0.6), paul_force(),
                                   quadrupole_force()])
def test_opposite_charge_reverses_first_step(force):
    start = np.array([0.3, -0.2, 0.5])
    steps = []
    for coupling in [0.7, -0.7]:
        position = start.copy()
        velocity = np.zeros(3)
        euler_step(position, velocity, force, coupling, 0.05, 0.3)
        steps.append((position - start, velocity))
    assert np.array_equal(steps[0][1], -steps[1][1])
    assert np.allclose(steps[0][0], -steps[1][0])
    assert np.any(steps[0][1] != 0)


def test_quadrupole_force_has_no_axial_component():
    force = quadrupole_force()
    state = ParticleState([0.1, 0.2, 0.0], [0.0, 0.0, 0.3])
    data = integrate(state, force, 1.0, 0.01, 1.0)
    assert np.allclose(data.velocity.sel(component="z").values, 0.3)
    assert np.allclose(data.position.sel(component="z").values,
                       0.3 * data.time.values)
    assert force(np.array([0.1, 0.2, 5.0]), np.zeros(3), 0.0)[2] == 0


def test_trap_force_adds_lorentz_term():
    force = TrapForce(CapRingTrap(U0=0.0), (0.0, 0.0, 2.0))
    F = force(np.array([0.5, 0.5, 0.5]), np.array([1.0, 0.0, 0.0]), 0.0)
    # v x B = x x 2z = -2y
    assert np.allclose(F, [0.0, -2.0, 0.0])


def test_boris_push_conserves_speed_in_magnetic_field():
    force = TrapForce(CapRingTrap(U0=0.0), (0.0, 0.0, 1.0))
    position = np.array([0.0, 0.0, 0.0])
    velocity = np.array([1.0, 0.0, 0.25])
    for n in range(1000):
        boris_step(position, velocity, force, 1.0, 0.1, n * 0.1)
    assert np.isclose(np.linalg.norm(velocity), np.sqrt(1.0 + 0.25**2),
                      rtol=1e-10)
    assert np.isclose(velocity[2], 0.25)
    assert np.isclose(position[2], 0.25 * 100)


def test_boris_penning_orbit_stays_bounded(penning_state):
    data = integrate(penning_state, penning_force(B0=3.0), 1.0, 0.01, 20,
                     method="boris")
    assert data.attrs["method"] == "boris"
    assert np.all(np.abs(data.position.values) < 10)


def test_boris_and_euler_agree_without_magnetic_field():
    state = ParticleState([0.2, 0.1, -0.3], [0.0, 0.1, 0.0])
    euler = integrate(state, paul_force(), 1.0, 0.01, 0.5)
    boris = integrate(state, paul_force(), 1.0, 0.01, 0.5, method="boris")
    assert np.allclose(euler.position.values, boris.position.values,
                       rtol=1e-10)


def test_cancel_stops_iteration():
    state = ParticleState([0, 0, 0], [1, 0, 0])
    integrator = TrajectoryIntegrator(state, zero_force, 1.0, 0.1, 10.0)
    assert integrator.status is IntegratorStatus.IDLE
    states = []
    for s in integrator:
        assert integrator.status is IntegratorStatus.RUNNING
        states.append(s)
        if len(states) == 3:
            integrator.cancel()
    assert len(states) == 3
    assert integrator.status is IntegratorStatus.CANCELLED


def test_cancel_after_last_state_stays_cancelled():
    state = ParticleState([0, 0, 0], [1, 0, 0])
    integrator = TrajectoryIntegrator(state, zero_force, 1.0, 0.1, 0.2)
    states = iter(integrator)
    for _ in range(3):
        next(states)
    integrator.cancel()
    assert list(states) == []
    assert integrator.status is IntegratorStatus.CANCELLED


def test_run_never_passes_end_time():
    state = ParticleState([0, 0, 0], [1, 0, 0])
    states = list(TrajectoryIntegrator(state, zero_force, 1.0, 0.01, 19.9999))
    assert len(states) == 2000
    assert states[-1].time <= 19.9999


def test_integrator_runs_only_once():
    state = ParticleState([0, 0, 0], [1, 0, 0])
    integrator = TrajectoryIntegrator(state, zero_force, 1.0, 0.1, 1.0)
    list(integrator)
    assert integrator.status is IntegratorStatus.COMPLETED
    with pytest.raises(RuntimeError):
        iter(integrator)


def test_non_finite_force_raises_divergence():
    def bad_force(position, velocity, time):
        return np.array([np.inf, 0.0, 0.0])

    state = ParticleState([0.5, 0, 0], [0, 0, 0])
    integrator = TrajectoryIntegrator(state, bad_force, 1.0, 0.1, 1.0)
    states = []
    with pytest.raises(NumericalDivergenceError) as excinfo:
        for s in integrator:
            states.append(s)
    assert len(states) == 1
    assert integrator.status is IntegratorStatus.DIVERGED
    assert excinfo.value.step == 0
    assert np.array_equal(excinfo.value.state.position, [0.5, 0, 0])


def test_gradient_overflow_raises_divergence():
    state = ParticleState([1e308, 0, 0], [0, 0, 0])
    integrator = TrajectoryIntegrator(state, penning_force(), 1.0, 0.1, 1.0)
    with pytest.raises(NumericalDivergenceError) as excinfo:
        list(integrator)
    assert isinstance(excinfo.value.__cause__, FloatingPointError)
    assert integrator.status is IntegratorStatus.DIVERGED


def test_unstable_paul_trap_diverges():
    state = ParticleState([0.1, 0.0, 0.1], [0.0, 0.0, 0.0])
    integrator = TrajectoryIntegrator(state, paul_force(), 1e3, 0.1, 100.0)
    with pytest.raises(NumericalDivergenceError) as excinfo:
        list(integrator)
    assert integrator.status is IntegratorStatus.DIVERGED
    assert excinfo.value.state.is_finite()
    assert 0 <= excinfo.value.step < integrator.num_steps


def test_bad_configuration_is_rejected():
    state = ParticleState([0, 0, 0], [0, 0, 0])
    with pytest.raises(ConfigurationError):
        TrajectoryIntegrator(state, zero_force, 1.0, 0.0, 1.0)
    with pytest.raises(ConfigurationError):
        TrajectoryIntegrator(state, zero_force, 1.0, -0.1, 1.0)
    with pytest.raises(ConfigurationError):
        TrajectoryIntegrator(state, zero_force, 1.0, 0.1, -1.0)
    with pytest.raises(ConfigurationError):
        TrajectoryIntegrator(state, zero_force, np.nan, 0.1, 1.0)
    with pytest.raises(ConfigurationError):
        TrajectoryIntegrator(state, zero_force, 1.0, 0.1, 1.0, method="rk4")
    with pytest.raises(ConfigurationError):
        TrajectoryIntegrator(ParticleState([np.nan, 0, 0], [0, 0, 0]),
                             zero_force, 1.0, 0.1, 1.0)


def test_integrate_returns_dataset(penning_state):
    data = integrate(penning_state, penning_force(B0=0.6), 0.5, 0.1, 20)
    assert data.position.dims == ("time", "component")
    assert data.position.shape == (201, 3)
    assert data.velocity.shape == (201, 3)
    assert list(data.component.values) == ["x", "y", "z"]
    assert data.attrs["coupling"] == 0.5
    assert data.attrs["method"] == "euler"
    assert np.array_equal(data.position.isel(time=0).values,
                          [0.0, 0.0, -1.0])


def test_paul_force_uses_time():
    force = paul_force(PaulTrap(U0=0.0, U1=1.0, Omega=np.pi))
    position = np.array([0.0, 0.0, 1.0])
    at_zero = force(position, np.zeros(3), 0.0)
    at_half = force(position, np.zeros(3), 1.0)
    assert np.allclose(at_zero, -at_half)
