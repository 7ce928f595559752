"""Analysis passes, in the order the pipeline runs them."""

from .base import AnalysisPass
from .data_model import DataModelPass
from .deployment import DeploymentPass
from .endpoints import EndpointPass
from .features import FeatureExtractionPass
from .inventory import InventoryPass
from .python import PythonServicePass
from .routes import RoutePass


def default_passes():
    """Fresh instances of every pass in execution order."""
    return [
        InventoryPass(),
        RoutePass(),
        EndpointPass(),
        DataModelPass(),
        DeploymentPass(),
        PythonServicePass(),
        FeatureExtractionPass(),
    ]


__all__ = [
    "AnalysisPass",
    "InventoryPass",
    "RoutePass",
    "EndpointPass",
    "DataModelPass",
    "DeploymentPass",
    "PythonServicePass",
    "FeatureExtractionPass",
    "default_passes",
]
