"""
Shared test fixtures for quantile carving.

Provides small synthetic stream networks with known topology and elevation
profiles, plus mock raster objects with ``_griddata`` / ``_georef_info``
attributes mimicking the TopoAnalysis interface.  No data files needed.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from network import StreamNetwork
from synthetic import concave_profile, disjoint_union, linear_chain, y_network


# ---------------------------------------------------------------------------
# Lightweight mock classes that replicate the TopoAnalysis interface
# ---------------------------------------------------------------------------

class MockGeorefInfo:
    """Mimics dem._georef_info with a dx attribute."""
    def __init__(self, dx: float = 10.0):
        self.dx = dx


class MockGrid:
    """Mimics a TopoAnalysis raster object (Elevation, FlowDirectionD8)."""
    def __init__(self, griddata: np.ndarray, dx: float = 10.0, nodata=np.nan):
        self._griddata = griddata.astype(float)
        self._georef_info = MockGeorefInfo(dx)
        self._nodata_value = nodata


# ---------------------------------------------------------------------------
# Helper: build a consistent D8 flow-direction grid for a tilted plane
# ---------------------------------------------------------------------------

def _build_d8_flow(Ny: int, Nx: int) -> np.ndarray:
    """Create a D8 flow direction grid where everything drains to one outlet.

    Convention:
        1=E, 2=SE, 4=S, 8=SW, 16=W, 32=NW, 64=N, 128=NE
    Interior cells flow south (code 4).  Left-column interior flows SE (2),
    right-column interior flows SW (8).  Bottom row cells flow toward the
    centre of the bottom row, whose south neighbour is off-grid (outlet).
    """
    fd = np.full((Ny, Nx), 4, dtype=float)

    fd[:-1, 0] = 2
    fd[:-1, -1] = 8

    center = Nx // 2
    for i in range(Nx):
        if i < center:
            fd[-1, i] = 1
        elif i > center:
            fd[-1, i] = 16
        else:
            fd[-1, i] = 4

    return fd


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def grid_shape():
    """Standard test grid dimensions."""
    return (20, 20)  # Ny, Nx


@pytest.fixture
def dx():
    """Grid spacing in metres."""
    return 10.0


@pytest.fixture
def synthetic_flow_direction(grid_shape, dx):
    """D8 flow direction grid draining to the centre of the bottom row."""
    Ny, Nx = grid_shape
    return MockGrid(_build_d8_flow(Ny, Nx), dx=dx)


@pytest.fixture
def synthetic_dem(grid_shape, dx):
    """20×20 grid with a tilted plane + small noise (elevation decreasing southward)."""
    Ny, Nx = grid_shape
    rng = np.random.RandomState(42)
    j_coords, i_coords = np.meshgrid(np.arange(Ny), np.arange(Nx), indexing="ij")
    Z = 1000.0 - 5.0 * j_coords + 0.1 * rng.randn(Ny, Nx)
    return MockGrid(Z, dx=dx)


@pytest.fixture
def spike_chain():
    """5-node chain with a noisy spike at node 2.

    Distances are measured downstream from the headwater.
    """
    S = StreamNetwork.from_receivers([1, 2, 3, 4, -1], [0.0, 10.0, 20.0, 30.0, 40.0])
    z = np.array([100.0, 95.0, 110.0, 90.0, 85.0])
    return S, z


@pytest.fixture
def junction_network():
    """Trunk of 6 nodes with a 2-node tributary joining at trunk node 3.

    Trunk elevations carry a spike at the junction (145) that a tau=0.37
    fit lowers to 125.  Tributary elevations (128, 126) sit between the
    fitted and the raw junction elevation.
    """
    S = y_network(6, 2, dx=10.0, junction=3)
    z = np.array([160.0, 130.0, 125.0, 145.0, 110.0, 100.0, 128.0, 126.0])
    return S, z


@pytest.fixture
def two_basins():
    """Two noisy basins: a 12-node chain and a 15-node trunk with a tributary."""
    S1 = linear_chain(12, dx=10.0)
    S2 = y_network(15, 5, dx=10.0, junction=7)
    S = disjoint_union(S1, S2)
    z = concave_profile(S, z_outlet=50.0, relief=100.0, length_scale=80.0, noise=2.0, seed=3)
    return S, z
