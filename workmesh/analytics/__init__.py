"""
Worker performance analytics.
"""
from .performance import (
    PerformanceAnalytics,
    PerformanceSnapshot,
    BottleneckReport,
    PairingRecommendation,
    OutcomeRecord,
)

__all__ = [
    'PerformanceAnalytics',
    'PerformanceSnapshot',
    'BottleneckReport',
    'PairingRecommendation',
    'OutcomeRecord',
]
