"""PointCloud class."""

from __future__ import annotations

import torch

from ..errors import ShapeError
from ..geometry import RigidTransform
from ..globals import int_dtype
from ..input_validation import convert_inputs, one_and_only_one, typecheck
from ..types import (
    Float1dTensor,
    Int1dTensor,
    IntSequence,
    Number,
    Points3d,
    PointTextureCoords,
    point_cloud_type,
)
from .cleaning import clean_invalid_normals


class PointCloud(point_cloud_type):
    """A set of 3D points with optional per-point attributes.

    Points are stored as a (n, 3) tensor. Normals and colors are (n, 3)
    tensors and texture coordinates a (n, 2) tensor; all of them are aligned
    with the points, so that the index of a point identifies it across all
    attributes. A point cloud is never modified in place: all the methods
    return new objects.

    Positions and attributes may be given as torch tensors, numpy arrays or
    lists, they are converted to the float dtype of the library.
    """

    @convert_inputs
    @typecheck
    def __init__(
        self,
        points: Points3d,
        *,
        normals: Points3d | None = None,
        colors: Points3d | None = None,
        texture_coords: PointTextureCoords | None = None,
    ) -> None:
        """Class constructor.

        Parameters
        ----------
        points
            The (n, 3) positions.
        normals
            Optional (n, 3) normals.
        colors
            Optional (n, 3) colors, e.g. RGB values.
        texture_coords
            Optional (n, 2) texture coordinates. They are carried along but
            not used by the matching.

        Raises
        ------
        ShapeError
            If an attribute does not have one row per point.
        """
        n_points = len(points)
        attributes = {
            "normals": normals,
            "colors": colors,
            "texture_coords": texture_coords,
        }
        for name, value in attributes.items():
            if value is not None and len(value) != n_points:
                msg = (
                    f"{name} must have one row per point, got {len(value)}"
                    + f" rows for {n_points} points"
                )
                raise ShapeError(msg)

        self._points = points.clone()
        self._normals = None if normals is None else normals.clone()
        self._colors = None if colors is None else colors.clone()
        self._texture_coords = (
            None if texture_coords is None else texture_coords.clone()
        )

    ####################
    #### Attributes ####
    ####################

    @property
    def points(self) -> Points3d:
        """The (n, 3) positions."""
        return self._points

    @property
    def normals(self) -> Points3d | None:
        """The (n, 3) normals, if any."""
        return self._normals

    @property
    def colors(self) -> Points3d | None:
        """The (n, 3) colors, if any."""
        return self._colors

    @property
    def texture_coords(self) -> PointTextureCoords | None:
        """The (n, 2) texture coordinates, if any."""
        return self._texture_coords

    @property
    def n_points(self) -> int:
        """Number of points."""
        return len(self._points)

    @property
    def has_normals(self) -> bool:
        return self._normals is not None

    @property
    def has_colors(self) -> bool:
        return self._colors is not None

    @property
    def dtype(self) -> torch.dtype:
        return self._points.dtype

    def __len__(self) -> int:
        return self.n_points

    def __repr__(self) -> str:
        attributes = [
            name
            for name in ["normals", "colors", "texture_coords"]
            if getattr(self, name) is not None
        ]
        return f"PointCloud(n_points={self.n_points}, attributes={attributes})"

    ##################
    #### Geometry ####
    ##################

    @property
    def bounding_box(self) -> Points3d:
        """(2, 3) tensor with the min and max corners of the bounding box."""
        return torch.stack(
            [self._points.min(dim=0).values, self._points.max(dim=0).values]
        )

    @property
    def diameter(self) -> float:
        """Length of the diagonal of the bounding box."""
        if self.n_points == 0:
            return 0.0
        low, high = self.bounding_box
        return float(torch.linalg.norm(high - low))

    @property
    def centroid(self) -> Float1dTensor:
        return self._points.mean(dim=0)

    ###################################
    #### Copies and transformations ####
    ###################################

    def _replace(self, **kwargs) -> PointCloud:
        attributes = {
            "normals": self._normals,
            "colors": self._colors,
            "texture_coords": self._texture_coords,
        }
        attributes.update(kwargs)
        points = attributes.pop("points", self._points)
        return PointCloud(points, **attributes)

    @typecheck
    def copy(self) -> PointCloud:
        """Return a copy of the point cloud."""
        return self._replace()

    @typecheck
    def transform(self, transform: RigidTransform) -> PointCloud:
        """Return a rigidly moved copy of the point cloud.

        Positions are moved and normals rotated. Colors and texture
        coordinates are copied unchanged.
        """
        normals = self._normals
        if normals is not None:
            normals = transform.apply_to_normals(normals)
        return self._replace(
            points=transform.apply(self._points), normals=normals
        )

    @convert_inputs
    @typecheck
    def select(self, indices: Int1dTensor | IntSequence) -> PointCloud:
        """Return the sub-cloud made of the points at the given indices."""
        indices = torch.as_tensor(indices, dtype=int_dtype)
        return PointCloud(
            self._points[indices],
            normals=None if self._normals is None else self._normals[indices],
            colors=None if self._colors is None else self._colors[indices],
            texture_coords=(
                None
                if self._texture_coords is None
                else self._texture_coords[indices]
            ),
        )

    @typecheck
    @one_and_only_one(["n_points", "ratio"])
    def sample_indices(
        self,
        *,
        n_points: int | None = None,
        ratio: Number | None = None,
        generator: torch.Generator | None = None,
    ) -> Int1dTensor:
        """Indices of a uniform random subset of the points.

        Parameters
        ----------
        n_points
            The number of points to keep. If the cloud has fewer points, all
            of them are kept (in random order).
        ratio
            The fraction of the points to keep, in [0, 1].
        generator
            The random source. Defaults to torch's global generator.

        Raises
        ------
        InputStructureError
            If both or none of n_points and ratio are provided.

        Returns
        -------
        Int1dTensor
            The indices of the kept points, without repetition.
        """
        if ratio is not None:
            if not 0 <= ratio <= 1:
                msg = f"ratio must be in [0, 1], got {ratio}"
                raise ValueError(msg)
            n_points = round(ratio * self.n_points)

        if n_points < 0:
            msg = f"n_points must be non-negative, got {n_points}"
            raise ValueError(msg)

        permutation = torch.randperm(self.n_points, generator=generator)
        return permutation[: min(n_points, self.n_points)]

    @typecheck
    @one_and_only_one(["n_points", "ratio"])
    def subsample(
        self,
        *,
        n_points: int | None = None,
        ratio: Number | None = None,
        generator: torch.Generator | None = None,
    ) -> PointCloud:
        """Uniform random subsampling, see ``sample_indices``."""
        indices = self.sample_indices(
            n_points=n_points, ratio=ratio, generator=generator
        )
        return self.select(indices)

    @typecheck
    def clean_normals(self, min_norm: Number = 0.1) -> PointCloud:
        """Drop the points with degenerate normals and normalize the others.

        See ``clean_invalid_normals``. Colors and texture coordinates of the
        dropped points are dropped too. A cloud without normals is returned
        as a copy.
        """
        if self._normals is None:
            return self.copy()

        keep = torch.linalg.norm(self._normals, dim=1) >= min_norm
        points, normals = clean_invalid_normals(
            self._points, self._normals, min_norm=min_norm
        )
        return PointCloud(
            points,
            normals=normals,
            colors=None if self._colors is None else self._colors[keep],
            texture_coords=(
                None
                if self._texture_coords is None
                else self._texture_coords[keep]
            ),
        )
