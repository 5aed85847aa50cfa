from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()
engine = None
SessionLocal = None
_database_url = None

def init_db(database_url: str):
    global engine, SessionLocal, _database_url
    if engine is None or database_url != _database_url:
        if engine is not None:
            engine.dispose()
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        engine = create_engine(database_url, connect_args=connect_args)
        SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        _database_url = database_url
        # create tables
        from settlement_service import models
        Base.metadata.create_all(bind=engine)
