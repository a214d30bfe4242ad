"""Spatial indexing structures."""

from .cell_tree import CellTree
from .grid import HashGrid, pairwise_distances, shell_offsets
from .spatial_index import NeighborIndex
