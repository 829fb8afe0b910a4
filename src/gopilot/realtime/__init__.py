"""
Realtime Delivery

Room-based fan-out of queue events to connected dashboards and apps.
"""

from .broadcast import Broadcaster, broadcaster, office_room, parent_room, rooms_for, teacher_room

__all__ = [
    "Broadcaster",
    "broadcaster",
    "office_room",
    "parent_room",
    "rooms_for",
    "teacher_room",
]
