from .dbscan_service import DBSCANClusteringService

__all__ = ["DBSCANClusteringService"]
