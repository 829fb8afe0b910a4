"""
Dismissal Clients

Reconcilers that keep dashboard, teacher and parent views in sync.
"""

from .reconciler import (
    OfficeReconciler,
    ParentReconciler,
    QueueEntryView,
    QueueReconciler,
    TeacherReconciler,
)

__all__ = [
    "OfficeReconciler",
    "ParentReconciler",
    "QueueEntryView",
    "QueueReconciler",
    "TeacherReconciler",
]
