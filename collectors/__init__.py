from .base import Collector, CollectorResult, CommandResult
from .ports import PortCollector
from .processes import CwdCollector, ProcessLineCollector, ProcessMetadataFetcher, ResourceSampler
from .containers import ContainerListCollector, ContainerStatsCollector, ContainerRuntime
from .terminator import PortOwnerCollector, PortTerminator

__all__ = [
    "Collector",
    "CollectorResult",
    "CommandResult",
    "PortCollector",
    "CwdCollector",
    "ProcessLineCollector",
    "ProcessMetadataFetcher",
    "ResourceSampler",
    "ContainerListCollector",
    "ContainerStatsCollector",
    "ContainerRuntime",
    "PortOwnerCollector",
    "PortTerminator",
]
