"""Подключение к базе данных."""
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from .schema import Base


def make_engine(url: str) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    # Таблицы создаются при старте, миграций пока нет
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False)
