"""
Pipeline agents: plan, write, execute, heal.
"""
from .planner import Planner
from .writer import TestWriter, GeneratedSuite
from .executor import Executor
from .reporter import MarkdownReporter
from .healer import SelfHealer

__all__ = ["Planner", "TestWriter", "GeneratedSuite", "Executor", "MarkdownReporter", "SelfHealer"]
