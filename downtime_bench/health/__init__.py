"""Health subsystem — probes, failure tracking, scheduler, report."""

from .engine import CheckOutcome, check_target, execute_check
from .report import Report, TargetReport, WindowReport, build_report
from .scheduler import BaselineCheckError, MonitorScheduler, SchedulerState
from .tracker import FailureTracker, FailureWindow, Health, TargetState
