from fieldtracker.models.worker import Worker
from fieldtracker.models.job import Job
from fieldtracker.models.break_type import BreakType
from fieldtracker.models.system_setting import SystemSetting
from fieldtracker.models.time_entry import TimeEntry
from fieldtracker.models.break_entry import BreakEntry
from fieldtracker.models.photo import Photo
from fieldtracker.models.license import License
from fieldtracker.models.sync_log import SyncLog
from fieldtracker.models.sync_conflict import SyncConflict

__all__ = [
    "Worker",
    "Job",
    "BreakType",
    "SystemSetting",
    "TimeEntry",
    "BreakEntry",
    "Photo",
    "License",
    "SyncLog",
    "SyncConflict",
]
