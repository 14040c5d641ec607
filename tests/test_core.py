"""Tests for iontrap/core.py"""
import pytest
import warnings
from pathlib import Path
import numpy as np
from iontrap.core import (
    ComputeTool,
    ConfigurationError,
    PhysicsModule,
    Diagnostic,
    Simulation,
    SimulationClock,
    count_steps)


class ExampleTool(ComputeTool):
    """Example ComputeTool subclass for tests"""


class ExampleModule(PhysicsModule):
    """Example PhysicsModule subclass for tests"""
    def update(self):
        pass


class ExampleDiagnostic(Diagnostic):
    """Example Diagnostic subclass for tests"""
    def diagnose(self):
        pass


PhysicsModule.register("ExampleModule", ExampleModule)
ComputeTool.register("ExampleTool", ExampleTool)
Diagnostic.register("ExampleDiagnostic", ExampleDiagnostic)


def simple_input(tmp_path):
    return {"Clock": {"start_time": 0,
                      "end_time": 10,
                      "num_steps": 100},
            "Tools": {"ExampleTool": [
                {"custom_name": "example"},
                {"custom_name": "example2"}]},
            "PhysicsModules": {"ExampleModule": {}},
            "Diagnostics": {
                # default values come first
                "directory": f"{tmp_path}/default_output",
                "clock": {},
                "ExampleDiagnostic": [
                    {},
                    {}
                    ]
                }
            }


@pytest.fixture(name='simple_sim')
def sim_fixt(tmp_path):
    """Pytest fixture for basic simulation class"""
    return Simulation(simple_input(tmp_path))


def test_simulation_init_should_create_class_instance_when_called(simple_sim, tmp_path):
    """Test init method for Simulation class"""
    assert simple_sim.physics_modules == []
    assert simple_sim.compute_tools == []
    assert simple_sim.diagnostics == []
    assert simple_sim.clock is None
    assert simple_sim.input_data == simple_input(tmp_path)


def test_simulation_init_should_add_optional_sections():
    sim = Simulation({"Clock": {"end_time": 1, "num_steps": 1}})
    assert sim.input_data["Tools"] == {}
    assert sim.input_data["PhysicsModules"] == {}
    assert sim.input_data["Diagnostics"] == {}


def test_subclass():
    """Test if subclasses are contained in Simulation"""
    assert issubclass(ExampleModule, PhysicsModule)
    assert issubclass(ExampleDiagnostic, Diagnostic)
    assert issubclass(ExampleTool, ComputeTool)


def test_register_should_reject_duplicates_and_foreign_classes():
    with pytest.raises(ValueError):
        PhysicsModule.register("ExampleModule", ExampleModule)
    with pytest.raises(TypeError):
        PhysicsModule.register("NotAModule", ExampleTool)
    PhysicsModule.register("ExampleModule", ExampleModule, override=True)
    assert PhysicsModule.lookup("ExampleModule") is ExampleModule


def test_lookup_should_raise_key_error_for_unknown_name():
    with pytest.raises(KeyError):
        ComputeTool.lookup("NoSuchTool")
    assert not Diagnostic.is_valid_name("NoSuchDiagnostic")


def test_read_clock_from_input_should_set_clock_attr_when_called(simple_sim):
    """Test read_clock_from_input method in Simulation class"""
    simple_sim.read_clock_from_input()
    assert simple_sim.clock._owner == simple_sim
    assert simple_sim.clock.start_time == 0
    assert simple_sim.clock.time == 0
    assert simple_sim.clock.end_time == 10
    assert simple_sim.clock.this_step == 0
    assert simple_sim.clock.print_time is False
    assert simple_sim.clock.num_steps == 100
    assert simple_sim.clock.dt == 0.1
    dic = {"Clock": {"start_time": 0,
                     "end_time": 10,
                     "dt": 0.2,
                     "print_time": True}}
    other_sim = Simulation(dic)
    other_sim.read_clock_from_input()
    assert other_sim.clock.dt == 0.2
    assert other_sim.clock.num_steps == 50
    assert other_sim.clock.print_time is True


def test_clock_should_stop_at_last_whole_step_before_end_time():
    clock = SimulationClock(None, {"end_time": 1.0, "dt": 0.3})
    assert clock.num_steps == 3
    assert clock.start_time == 0


def test_clock_should_reject_bad_time_step():
    with pytest.raises(ConfigurationError):
        SimulationClock(None, {"end_time": 1.0, "dt": 0.0})
    with pytest.raises(ConfigurationError):
        SimulationClock(None, {"end_time": 1.0, "dt": -0.1})
    with pytest.raises(ConfigurationError):
        SimulationClock(None, {"end_time": 1.0, "num_steps": 0})
    with pytest.raises(KeyError):
        SimulationClock(None, {"end_time": 1.0})


def test_count_steps():
    assert count_steps(20, 0.1) == 200
    assert count_steps(0, 0.1) == 0
    assert count_steps(0.25, 0.1) == 2
    assert count_steps(19.9999, 0.01) == 1999
    assert count_steps(2e5 - 0.5, 1.0) == 199999
    with pytest.raises(ConfigurationError):
        count_steps(-1, 0.1)
    with pytest.raises(ConfigurationError):
        count_steps(1, np.nan)


def test_read_tools_from_input_should_set_tools_attr_when_called(simple_sim):
    """Test read_tools_from_input method in Simulation class"""
    simple_sim.read_tools_from_input()
    assert simple_sim.compute_tools[0]._owner == simple_sim
    assert simple_sim.compute_tools[0]._input_data == {"type": "ExampleTool", "custom_name": "example"}
    assert simple_sim.compute_tools[1]._owner == simple_sim
    assert simple_sim.compute_tools[1]._input_data == {"type": "ExampleTool", "custom_name": "example2"}


def test_fundamental_cycle_should_advance_clock_when_called(simple_sim):
    """Test fundamental_cycle method in Simulation class"""
    simple_sim.read_clock_from_input()
    simple_sim.fundamental_cycle()
    assert simple_sim.clock.this_step == 1
    assert simple_sim.clock.time == 0.1


def test_run_should_run_simulation_while_clock_is_running(simple_sim):
    """Test run method in Simulation class"""
    simple_sim.run()
    assert simple_sim.clock.this_step == 100
    assert simple_sim.clock.time == 10


def test_read_modules_from_input_should_set_modules_attr_when_called(simple_sim):
    """Test read_modules_from_input method in Simulation class"""
    simple_sim.read_modules_from_input()
    assert simple_sim.physics_modules[0]._owner == simple_sim
    assert simple_sim.physics_modules[0]._input_data == {"name": "ExampleModule"}


def test_find_tool_by_name_should_identify_one_tool(simple_sim):
    simple_sim.read_tools_from_input()
    tool = simple_sim.find_tool_by_name("ExampleTool", "example")
    tool2 = simple_sim.find_tool_by_name("ExampleTool", "example2")

    assert tool._input_data["custom_name"] == "example"
    assert tool2._input_data["custom_name"] == "example2"
    assert simple_sim.find_tool_by_name("ExampleTool") is None


def test_default_diagnostic_filename_increments_for_multiple_diagnostics(simple_sim, tmp_path):
    """Test read_diagnostic_from_input method in Simulation class"""
    simple_sim.read_diagnostics_from_input()
    directory = str(Path(f"{tmp_path}/default_output"))
    assert simple_sim.diagnostics[0]._input_data["directory"] == directory
    assert simple_sim.diagnostics[0]._input_data["filename"] == str(
        Path(directory) / Path("clock0.out"))
    input_data = simple_sim.diagnostics[2]._input_data
    assert input_data["filename"] == str(Path(directory)
                                         / Path("ExampleDiagnostic1.out"))


# Resource sharing
class ReceivingModule(PhysicsModule):
    """Example PhysicsModule subclass for tests"""
    def __init__(self, owner: Simulation, input_data: dict):
        super().__init__(owner, input_data)
        self.data = None
        self._needed_resources = {'shared': 'data'}

    def update(self):
        pass


class SharingModule(PhysicsModule):
    """Example PhysicsModule subclass for tests"""
    def __init__(self, owner: Simulation, input_data: dict):
        super().__init__(owner, input_data)
        self.data = ['test']
        self._resources_to_share = {'shared': self.data}

    def update(self):
        pass


PhysicsModule.register("Receiving", ReceivingModule)
PhysicsModule.register("Sharing", SharingModule)


@pytest.fixture(name='share_sim')
def shared_simulation_fixture():
    """Pytest fixture for basic simulation class"""
    dic = {"Clock": {"start_time": 0,
                     "end_time": 10,
                     "num_steps": 1},
           "PhysicsModules": {
               "Receiving": {},
               "Sharing": {}
           },
           }
    return Simulation(dic)


def test_that_shared_resource_is_available_in_initialize(share_sim):
    share_sim.prepare_simulation()
    assert len(share_sim.physics_modules) == 2
    assert len(share_sim.physics_modules[0].data) == 1
    assert (id(share_sim.physics_modules[0].data)
            == id(share_sim.physics_modules[1].data))


def test_missing_resource_should_warn():
    dic = {"Clock": {"end_time": 1, "num_steps": 1},
           "PhysicsModules": {"Receiving": {}}}
    sim = Simulation(dic)
    with warnings.catch_warnings(record=True) as w:
        warnings.simplefilter("always")
        sim.prepare_simulation()
    assert any("can't find needed resource shared" in str(m.message)
               for m in w)
    assert sim.physics_modules[0].data is None


def test_overwritten_resource_should_warn(share_sim):
    share_sim.prepare_simulation()
    with pytest.warns(UserWarning, match="overwritten"):
        share_sim.gather_shared_resources({'shared': []})
