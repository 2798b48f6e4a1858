# __init__.py
from .builder import build_all
from .dag import plan_build, schedule_phases
from .model import FailureRecord, Package, RunReport, TestUnit
from .plan import build_test_plan
from .retry import run_plan

__all__ = [
    "build_all",
    "plan_build",
    "schedule_phases",
    "build_test_plan",
    "run_plan",
    "Package",
    "TestUnit",
    "FailureRecord",
    "RunReport",
]
