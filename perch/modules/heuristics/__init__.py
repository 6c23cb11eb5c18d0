from .models import HeuristicKind, ShapeMatch
from .shape_signature import ShapeSignatureEstimator, euclidean_clusters, voxel_downsample
from .estimators import AlignmentHeuristic, ShapeSignatureHeuristic, render_points, residual_cloud

__all__ = [
    "HeuristicKind", "ShapeMatch",
    "ShapeSignatureEstimator", "euclidean_clusters", "voxel_downsample",
    "AlignmentHeuristic", "ShapeSignatureHeuristic", "render_points", "residual_cloud",
]
