"""
Process lifecycle management for wirecheck subjects.
"""

from wirecheck.process.subject import Subject, SubjectState

__all__ = [
    "Subject",
    "SubjectState",
]
