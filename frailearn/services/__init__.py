"""Service layer: learner activity entry points."""

from frailearn.services.activity import ActivityService, default_service

__all__ = ["ActivityService", "default_service"]
