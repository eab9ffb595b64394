# Infrastructure Layer
from .uow import (
    UnitOfWork,
    UoWProvider,
    SessionRepository,
    GoalRepository,
    LedgerRepository,
    create_uow_provider
)
