"""Point clouds and their preparation."""

from .cleaning import clean_invalid_normals
from .point_cloud import PointCloud
