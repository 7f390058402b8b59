"""EduJobs - durable job orchestration for the education platform.

Event-triggered, step-memoized background workflows: bulk user import,
account deletion, schedule emails, AI question generation and AI grading.
"""

__version__ = "0.1.0"
