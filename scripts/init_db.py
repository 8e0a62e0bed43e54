"""Initialize database tables (development only; use alembic elsewhere)."""
import asyncio

from app.database import init_db


if __name__ == "__main__":
    print("Creating database tables...")
    asyncio.run(init_db())
    print("Database tables created successfully!")
