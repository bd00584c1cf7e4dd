# app/db/session.py
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from app.core.config import settings

# The engine owns the connection pool for the configured database.
engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)

# One session per request or per background job run.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
