"""
Carpool Database Layer

Neo4j connection management and schema initialization.
"""
from contextlib import contextmanager

from neo4j import GraphDatabase
import structlog

from app.config import settings

logger = structlog.get_logger()

_driver = None


def get_driver():
    """Get or create Neo4j driver (singleton)."""
    global _driver
    if _driver is None:
        _driver = GraphDatabase.driver(
            settings.NEO4J_URI,
            auth=(settings.NEO4J_USER, settings.NEO4J_PASSWORD),
        )
        logger.info("neo4j_connected", uri=settings.NEO4J_URI)
    return _driver


@contextmanager
def get_session():
    """Get a Neo4j session (context manager)."""
    driver = get_driver()
    session = driver.session()
    try:
        yield session
    finally:
        session.close()


def init_schema():
    """Initialize constraints and indexes for member records."""
    constraints = [
        "CREATE CONSTRAINT IF NOT EXISTS FOR (u:User) REQUIRE u.id IS UNIQUE",
        "CREATE CONSTRAINT IF NOT EXISTS FOR (u:User) REQUIRE u.email IS UNIQUE",
        "CREATE CONSTRAINT IF NOT EXISTS FOR (l:DriverLicense) REQUIRE l.user_id IS UNIQUE",
        "CREATE CONSTRAINT IF NOT EXISTS FOR (i:VehicleInsurance) REQUIRE i.insurance_id IS UNIQUE",
        "CREATE CONSTRAINT IF NOT EXISTS FOR (r:ReliabilityScore) REQUIRE r.user_id IS UNIQUE",
    ]

    indexes = [
        "CREATE INDEX IF NOT EXISTS FOR (l:DriverLicense) ON (l.status)",
        "CREATE INDEX IF NOT EXISTS FOR (i:VehicleInsurance) ON (i.user_id)",
        "CREATE INDEX IF NOT EXISTS FOR (i:VehicleInsurance) ON (i.status)",
        "CREATE INDEX IF NOT EXISTS FOR (b:BookingRestriction) ON (b.user_id)",
        "CREATE INDEX IF NOT EXISTS FOR (b:BookingRestriction) ON (b.is_active)",
        "CREATE INDEX IF NOT EXISTS FOR (r:ReliabilityScore) ON (r.reliability_score)",
    ]

    with get_session() as session:
        for query in constraints + indexes:
            try:
                session.run(query)
            except Exception as e:
                logger.warning("schema_init_warning", query=query[:60], error=str(e))

    logger.info("schema_initialized", constraints=len(constraints), indexes=len(indexes))


def close():
    """Close the Neo4j driver."""
    global _driver
    if _driver:
        _driver.close()
        _driver = None
        logger.info("neo4j_disconnected")
