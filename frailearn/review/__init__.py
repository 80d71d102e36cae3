"""Spaced repetition review of flashcards."""

from frailearn.review.scheduler import ReviewScheduler, SM2Config, SM2Scheduler, apply_outcome

__all__ = ["ReviewScheduler", "SM2Config", "SM2Scheduler", "apply_outcome"]
