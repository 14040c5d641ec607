from pathlib import Path
import shutil


def pytest_unconfigure():
    """Remove output directories left behind by simulation runs"""
    parent = Path(__file__).parent
    for name in ["default_output", "penning_output"]:
        directory = parent / name
        if directory.is_dir():
            shutil.rmtree(directory.resolve())
