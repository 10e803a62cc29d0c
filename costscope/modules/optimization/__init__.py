"""
Optimization Module

Per-resource utilization and the findings derived from it:
- UsageClassifier: rolling CPU / memory / network averages
- WasteDetector: zombie, unused, overprovisioned and orphaned resources
- IdleResourceTracker: resources idle for consecutive days
- FindingLifecycleService: user-driven status transitions
"""

from .domain.usage import UsageClassifier
from .domain.waste_detector import WasteDetector
from .domain.idle_tracker import IdleResourceTracker
from .domain.lifecycle import FindingLifecycleService

__all__ = ["UsageClassifier", "WasteDetector", "IdleResourceTracker", "FindingLifecycleService"]
