"""
releasegate: Data-driven, multi-stage release approval orchestration.

Drives a software upgrade through an ordered catalog of approval, preparation
and test gates until it completes or fails.
"""

__version__ = "0.1.0"
