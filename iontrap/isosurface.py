"""
Equipotential surfaces as stacks of contour lines

The surface Φ(x, y, z) = c is approximated by cutting it with evenly
spaced planes of constant x, y and z. On each plane the potential is
sampled on a regular grid and the level-c contour lines are found with
the marching squares algorithm (:func:`skimage.measure.find_contours`).
The lines are then lifted back into three dimensions.
"""
import numpy as np
from skimage import measure

from .core import ConfigurationError
from .fields import PLANE_AXES, evaluate_on_plane

AXES = ("x", "y", "z")


class ContourLine:
    """One contour line on one slicing plane

    Parameters
    ----------
    axis : {``"x"``, ``"y"``, ``"z"``}
        The axis normal to the slicing plane.
    offset : float
        Position of the plane along `axis`.
    points : :class:`numpy.ndarray`
        Array of shape ``(n, 3)`` with the ordered (x, y, z) points of
        the line. Closed lines repeat their first point at the end.
    color
        Color tag of `axis`, passed through untouched.
    """
    def __init__(self, axis, offset, points, color):
        self.axis = axis
        self.offset = offset
        self.points = np.array(points, dtype=np.float64)
        self.points.setflags(write=False)
        self.color = color

    @property
    def x(self):
        return self.points[:, 0]

    @property
    def y(self):
        return self.points[:, 1]

    @property
    def z(self):
        return self.points[:, 2]

    def __len__(self):
        return len(self.points)

    def __repr__(self):
        return (f"{self.__class__.__name__}(axis={self.axis!r}, "
                f"offset={self.offset}, points={len(self)}, "
                f"color={self.color!r})")


class SliceSet:
    """All contour lines approximating one equipotential surface

    Parameters
    ----------
    isovalue : float
        The potential value c of the surface.
    colors : `dict`
        Color tag for each enabled axis.
    """
    def __init__(self, isovalue, colors):
        self.isovalue = isovalue
        self.colors = dict(colors)
        self.lines = []

    def add(self, line):
        self.lines.append(line)

    def lines_for(self, axis):
        """Contour lines on the planes normal to `axis`"""
        return [line for line in self.lines if line.axis == axis]

    def groups(self, axis):
        """Contour lines on the planes normal to `axis`, grouped by the
        plane offset"""
        grouped = {}
        for line in self.lines_for(axis):
            grouped.setdefault(line.offset, []).append(line)
        return grouped

    def is_empty(self):
        return not self.lines

    def __iter__(self):
        return iter(self.lines)

    def __len__(self):
        return len(self.lines)

    def __repr__(self):
        counts = {axis: len(self.lines_for(axis)) for axis in self.colors}
        return f"{self.__class__.__name__}(c={self.isovalue}, lines={counts})"


def plane_contours(values, level, first, second):
    """Level contours of a sampled plane in physical coordinates

    Parameters
    ----------
    values : :class:`numpy.ndarray`
        Samples of shape ``(len(first), len(second))``.
    level : float
        Contour level.
    first, second : :class:`numpy.ndarray`
        Increasing sample coordinates of the two grid axes.

    Returns
    -------
    list of :class:`numpy.ndarray`
        One ``(n, 2)`` array per contour line. Empty if the level is not
        crossed.
    """
    lines = []
    for contour in measure.find_contours(values, level):
        # contour points are fractional (row, column) indices
        a = np.interp(contour[:, 0], np.arange(len(first)), first)
        b = np.interp(contour[:, 1], np.arange(len(second)), second)
        lines.append(np.column_stack((a, b)))
    return lines


def _lift(axis, offset, line):
    points = np.empty((len(line), 3))
    first, second = PLANE_AXES[axis]
    points[:, AXES.index(axis)] = offset
    points[:, AXES.index(first)] = line[:, 0]
    points[:, AXES.index(second)] = line[:, 1]
    return points


def slice_isosurface(field, c=0, xrng=(-1, 1), yrng=None, zrng=None,
                     nlevels=6, slices=None, num_points=150, time=None):
    """Slice the surface ``field(x, y, z) == c`` along x, y and z

    Parameters
    ----------
    field : callable
        Vectorised scalar function ``field(x, y, z)``, for example a
        :class:`iontrap.fields.PotentialField`.
    c : float
        The isovalue.
    xrng, yrng, zrng : (float, float)
        Sampling ranges. `yrng` and `zrng` default to `xrng`.
    nlevels : int
        Number of slicing planes per axis, evenly spaced over the range
        of that axis, end points included.
    slices : `dict`, optional
        Maps each axis to slice along to its color tag. Axes which are
        not keys are skipped. Default is all three axes in black.
    num_points : int
        Number of samples per in-plane axis.
    time : float, optional
        Time passed to a time dependent
        :class:`iontrap.fields.PotentialField`.

    Returns
    -------
    :class:`SliceSet`

    Raises
    ------
    ConfigurationError
        For an unknown axis, fewer than one level, fewer than two sample
        points, or an empty range.
    """
    if slices is None:
        slices = {"x": "black", "y": "black", "z": "black"}
    if yrng is None:
        yrng = xrng
    if zrng is None:
        zrng = xrng
    ranges = {"x": xrng, "y": yrng, "z": zrng}

    unknown = set(slices) - set(AXES)
    if unknown:
        raise ConfigurationError(f"Unknown slicing axes {sorted(unknown)}")
    if nlevels < 1:
        raise ConfigurationError("Need at least one slicing plane")
    if num_points < 2:
        raise ConfigurationError("Need at least two samples per axis")
    for axis, (low, high) in ranges.items():
        if not high > low:
            raise ConfigurationError(f"Empty sampling range for {axis}")

    if time is None:
        function = field
    else:
        def function(x, y, z):
            return field(x, y, z, time)

    samples = {axis: np.linspace(low, high, num_points)
               for axis, (low, high) in ranges.items()}

    result = SliceSet(c, slices)
    for axis in AXES:
        if axis not in slices:
            continue
        first, second = (samples[a] for a in PLANE_AXES[axis])
        low, high = ranges[axis]
        for offset in np.linspace(low, high, nlevels):
            values = np.ascontiguousarray(
                evaluate_on_plane(function, axis, offset, first, second),
                dtype=np.float64)
            for line in plane_contours(values, c, first, second):
                result.add(ContourLine(axis, float(offset),
                                       _lift(axis, offset, line),
                                       slices[axis]))
    return result
