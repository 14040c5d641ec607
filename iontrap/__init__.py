"""Core iontrapPy module

Trap potentials, charged particle trajectories and equipotential
surface slices for ion-trap mass spectrometry.
"""
from .core import *
from .fields import *
from .trajectory import *
from .isosurface import *
from .computetools import *
from .modules import *
from .diagnostics import *
from .constructors import *
