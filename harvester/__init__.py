"""
Gallery Harvester package
"""
from .collector import Collector, GalleryStrategy, ScrollSnapshot
from .download_queue import DownloadQueue, prepare_queue, transform_to_original_url
from .history import StatusHistory
from .models import CollectedItem, CollectResult, QueueItem, StatusEvent, TransferOutcome
from .orchestrator import DownloadOrchestrator, RunState
from .settings import BrowserSettings, CollectorSettings, DownloadSettings
from .transfer import HttpTransfer, Transfer
from .utils import ConfigManager

__all__ = [
    'Collector',
    'GalleryStrategy',
    'ScrollSnapshot',
    'DownloadQueue',
    'prepare_queue',
    'transform_to_original_url',
    'StatusHistory',
    'CollectedItem',
    'CollectResult',
    'QueueItem',
    'StatusEvent',
    'TransferOutcome',
    'DownloadOrchestrator',
    'RunState',
    'BrowserSettings',
    'CollectorSettings',
    'DownloadSettings',
    'HttpTransfer',
    'Transfer',
    'ConfigManager',
]
