from .lifecycle import IndexBuildError, IndexLifecycle, IndexPaths
from .locate import IndexService, LocateIndexService

__all__ = ["IndexBuildError", "IndexLifecycle", "IndexPaths", "IndexService", "LocateIndexService"]
