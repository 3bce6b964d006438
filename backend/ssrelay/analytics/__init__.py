from .engine import AnalyticsEngine
from .reports import ReportGenerator

__all__ = ['AnalyticsEngine', 'ReportGenerator']
