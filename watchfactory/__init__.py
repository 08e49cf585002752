"""watchfactory: shared Kubernetes watches with concurrent, safely removable subscribers."""

from watchfactory.factory import ResourceEventHandler, WatchFactory
from watchfactory.models.resources import ResourceKind

__version__ = "0.1.0"

__all__ = ["ResourceEventHandler", "ResourceKind", "WatchFactory", "__version__"]
