"""Keyed traffic aggregation and threshold alarming."""

from aggregator.errors import InvalidConfiguration
from aggregator.rolling_average import RollingAverage, rolling_average
from aggregator.topk import Entry, RankedHeap, to_ranked, top_k
from aggregator.alarm import Alarm, AlarmEvent, ActiveAlarm, TRIGGERED, RESOLVED
from aggregator.scheduler import Aggregator, Report, ReportEntry

__all__ = [
    "InvalidConfiguration",
    "RollingAverage",
    "rolling_average",
    "Entry",
    "RankedHeap",
    "to_ranked",
    "top_k",
    "Alarm",
    "AlarmEvent",
    "ActiveAlarm",
    "TRIGGERED",
    "RESOLVED",
    "Aggregator",
    "Report",
    "ReportEntry",
]
