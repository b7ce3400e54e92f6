"""Database connection and session management."""
from decimal import Decimal
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator
import logging

from config import DATABASE_URL
from models import Base, Category, Product

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across threads
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,  # Verify connections before use
        "pool_recycle": 3600,
        "pool_timeout": 30,
    }


engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database session.

    Yields:
        Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


SEED_CATALOG = {
    "Hand tools": [
        ("Sledgehammer 2kg", "Forged steel head with a solid hardwood handle.", "150000", 50,
         {"weight": "2kg", "material": "Forged steel + wood"}),
        ("Insulated pliers 8 inch", "Rubber grip, rated for live electrical work.", "85000", 100,
         {"size": "8 inch", "insulation": "1000V"}),
        ("Screwdriver set 6 pieces", "Magnetic tips, anti-slip rubber handles.", "120000", 75,
         {"pieces": 6, "magnetic": True}),
        ("Wrench set 8 pieces", "Open-end wrenches 8-24mm, chrome vanadium steel.", "220000", 40,
         {"range": "8-24mm", "material": "Cr-V"}),
    ],
    "Power tools": [
        ("Cordless drill 18V", "Two-speed drill driver with two batteries.", "1250000", 20,
         {"voltage": "18V", "batteries": 2}),
        ("Angle grinder 100mm", "850W grinder for cutting and polishing.", "690000", 25,
         {"power": "850W", "disc": "100mm"}),
    ],
    "Measuring tools": [
        ("Digital caliper 150mm", "Stainless steel caliper, 0.01mm resolution.", "320000", 30,
         {"range": "0-150mm", "resolution": "0.01mm"}),
        ("Tape measure 5m", "Locking steel tape with belt clip.", "45000", 200,
         {"length": "5m"}),
    ],
    "Accessories & drill bits": [
        ("HSS drill bit set 13 pieces", "High-speed steel bits 1.5-6.5mm.", "135000", 60,
         {"pieces": 13, "material": "HSS"}),
    ],
}


def init_db() -> None:
    """Initialize database tables and seed data."""
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        if db.query(Product).count() == 0:
            for category_name, products in SEED_CATALOG.items():
                category = Category(name=category_name)
                db.add(category)
                for name, description, price, stock, specs in products:
                    db.add(Product(
                        name=name,
                        description=description,
                        price=Decimal(price),
                        stock_quantity=stock,
                        specifications=specs,
                        images=[],
                        category=category,
                    ))
            db.commit()
            logger.info("Seeded database with sample catalog")
    finally:
        db.close()
