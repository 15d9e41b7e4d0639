from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from pydantic_settings import BaseSettings
from functools import lru_cache, wraps
import logging

from core.exceptions import SkateGameException

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = "sqlite:///./skate_duels.db"
    log_level: str = "INFO"

    # Duel timing
    turn_deadline_seconds: int = 24 * 60 * 60
    deadline_warning_seconds: int = 60 * 60
    game_hard_cap_days: int = 7

    # Battle timing
    vote_timeout_seconds: int = 60

    # Disconnect handling
    reconnect_window_seconds: int = 2 * 60

    # Idempotency ledgers
    duel_ledger_size: int = 50
    battle_ledger_size: int = 50

    # Timeout reconciler
    reconciler_enabled: bool = True
    reconciler_interval_seconds: int = 10

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings():
    return Settings()


settings = get_settings()

# SQLite needs check_same_thread=False: FastAPI runs sync endpoints in a threadpool
# and the reconciler sweeps from a worker thread.
engine = create_engine(
    settings.database_url,
    connect_args={"check_same_thread": False} if settings.database_url.startswith("sqlite") else {},
    pool_pre_ping=True
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    """
    FastAPI dependency: one Session per request.

    The session is closed when the request finishes; commits happen
    inside @transactional business functions only.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def transactional(func):
    """
    Transaction decorator: the wrapped function runs as one atomic unit.

    Usage:
        @transactional
        def some_business_logic(db: Session, ...):
            contest = with_contest_lock(contest_id, db).first()
            contest.phase = TurnPhase.JUDGE
            # no manual commit, the decorator commits

    On exception:
        - rollback
        - the exception is re-raised for the caller to map
        - domain rejections (SkateGameException) are logged at INFO,
          anything else at ERROR with the traceback

    Notes:
        - the first positional argument (or the `db` keyword) must be a Session
        - do not commit inside the wrapped function
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        db = None
        if args and isinstance(args[0], Session):
            db = args[0]
        elif 'db' in kwargs:
            db = kwargs['db']

        if db is None:
            raise ValueError(
                f"@transactional requires 'db: Session' as first argument, "
                f"but got args={args}, kwargs={kwargs}"
            )

        try:
            result = func(*args, **kwargs)
            db.commit()
            return result
        except SkateGameException as e:
            logger.info(f"Transaction rejected in {func.__name__}: {e.code}: {e}")
            db.rollback()
            raise
        except Exception as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            raise

    return wrapper
