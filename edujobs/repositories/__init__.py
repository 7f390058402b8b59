"""Database repositories (asyncpg)."""

from edujobs.repositories.accounts import AccountsRepository
from edujobs.repositories.exercises import ExercisesRepository
from edujobs.repositories.grading import GradingRepository
from edujobs.repositories.imports import ImportsRepository
from edujobs.repositories.logistics import LogisticsRepository
from edujobs.repositories.notifications import NotificationsRepository
from edujobs.repositories.runs import PostgresRunStore

__all__ = [
    "AccountsRepository",
    "ExercisesRepository",
    "GradingRepository",
    "ImportsRepository",
    "LogisticsRepository",
    "NotificationsRepository",
    "PostgresRunStore",
]
