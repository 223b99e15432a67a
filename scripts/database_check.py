"""
Database connectivity and correlation consistency check
"""
import asyncio
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from app.db.database import AsyncSessionLocal, engine
from sqlalchemy import text
from loguru import logger

# Observables whose cached counts disagree with their links
DRIFT_QUERY = text("""
    SELECT o.id, o.value, o.evidences_count, o.cases_count,
           COUNT(DISTINCT eo.evidence_id) AS actual_evidences,
           COUNT(DISTINCT e.case_id) AS actual_cases
    FROM observables o
    LEFT JOIN evidence_observables eo ON eo.observable_id = o.id
    LEFT JOIN evidence e ON e.id = eo.evidence_id
    GROUP BY o.id, o.value, o.evidences_count, o.cases_count
    HAVING o.evidences_count != COUNT(DISTINCT eo.evidence_id)
        OR o.cases_count != COUNT(DISTINCT e.case_id)
""")


async def check_database() -> int:
    """Check connectivity, print table sizes and return the number of drifted observables"""
    logger.info("🔍 Checking database connectivity...")

    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
            logger.info("✅ Database connection successful")

            logger.info("📊 Database statistics:")
            for table in ("cases", "evidence", "observables", "evidence_observables", "audit_logs"):
                count = await db.execute(text(f"SELECT COUNT(*) FROM {table}"))
                logger.info(f"   {table}: {count.scalar()}")

            drifted = (await db.execute(DRIFT_QUERY)).all()
            for row in drifted:
                logger.warning(
                    f"   Count drift on observable {row.id} ({row.value[:60]}): "
                    f"stored {row.evidences_count}/{row.cases_count}, "
                    f"actual {row.actual_evidences}/{row.actual_cases}"
                )
            if not drifted:
                logger.info("✅ Observable counts consistent with links")

    except Exception as e:
        logger.error(f"❌ Database check failed: {e}")
        raise
    finally:
        await engine.dispose()

    return len(drifted)


if __name__ == "__main__":
    sys.exit(1 if asyncio.run(check_database()) else 0)
