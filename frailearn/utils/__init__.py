from frailearn.utils.time import days_between, utcnow

__all__ = ["days_between", "utcnow"]
