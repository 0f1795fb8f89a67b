from .reporter import RunReporter

__all__ = ["RunReporter"]
