"""
Carpool - Score Persistence Layer

Every refreshed trust score is recorded in Neo4j, giving each member a history
of how their score moved over time. The profile's trust_score is written in
the same statement, so the two never disagree.

Schema:
    (:ScoreRecord {
        score_id,          # unique per refresh
        user_id,
        score,             # 0-100
        tier,
        is_complete,
        categories,        # JSON array of category breakdowns
        calculated_at
    })

    (:User)-[:HAS_SCORE]->(:ScoreRecord)       # latest
    (:User)-[:SCORE_HISTORY]->(:ScoreRecord)   # all past scores
"""
import uuid
import json
from datetime import datetime, timezone
from typing import Dict, Any, List

from neo4j.exceptions import DriverError, Neo4jError
import structlog

from app.db.neo4j import get_session
from app.members.store import MemberNotFoundError, StoreUnavailableError

logger = structlog.get_logger()


class ScorePersistence:
    """Saves and retrieves trust score history from Neo4j."""

    def save_score(self, user_id: str, score_data: Dict[str, Any]) -> str:
        """
        Create a :ScoreRecord, move the HAS_SCORE link to it and write the
        score onto the profile, all in one transaction. Returns the new score_id.
        """
        score_id = f"score_{uuid.uuid4().hex[:16]}"

        try:
            written = self._save(score_id, user_id, score_data)
        except (DriverError, Neo4jError) as e:
            logger.error("score_persist_failed", user_id=user_id, error=str(e))
            raise StoreUnavailableError(f"save_score failed: {e}") from e

        if not written:
            raise MemberNotFoundError(user_id)

        logger.info("score_persisted", user_id=user_id, score_id=score_id, score=score_data.get("score"))
        return score_id

    def _save(self, score_id: str, user_id: str, score_data: Dict[str, Any]) -> bool:
        with get_session() as session:
            record = session.run("""
                MATCH (u:User {id: $user_id})

                CREATE (s:ScoreRecord {
                    score_id: $score_id,
                    user_id: $user_id,
                    score: $score,
                    tier: $tier,
                    is_complete: $is_complete,
                    categories: $categories,
                    engine_version: $engine_version,
                    calculated_at: datetime($calculated_at)
                })

                SET u.trust_score = $score,
                    u.trust_score_updated_at = $calculated_at

                WITH u, s
                OPTIONAL MATCH (u)-[old:HAS_SCORE]->(:ScoreRecord)
                DELETE old
                CREATE (u)-[:HAS_SCORE]->(s)
                CREATE (u)-[:SCORE_HISTORY]->(s)
                RETURN s.score_id as score_id
            """,
                user_id=user_id,
                score_id=score_id,
                score=score_data.get("score", 0),
                tier=score_data.get("tier", "getting_started"),
                is_complete=score_data.get("is_complete", False),
                categories=json.dumps(score_data.get("categories", [])),
                engine_version=score_data.get("engine_version", ""),
                calculated_at=score_data.get("calculated_at", datetime.now(timezone.utc).isoformat()),
            ).single()
        return record is not None

    def get_score_history(self, user_id: str, limit: int = 30) -> List[Dict[str, Any]]:
        """Most recent first."""
        try:
            with get_session() as session:
                result = session.run("""
                    MATCH (:User {id: $user_id})-[:SCORE_HISTORY]->(s:ScoreRecord)
                    RETURN s {.*} as score
                    ORDER BY s.calculated_at DESC
                    LIMIT $limit
                """, user_id=user_id, limit=limit)
                return [_record_to_dict(r["score"]) for r in result]
        except (DriverError, Neo4jError) as e:
            logger.error("score_history_failed", user_id=user_id, error=str(e))
            raise StoreUnavailableError(f"get_score_history failed: {e}") from e

    def init_schema(self):
        queries = [
            "CREATE CONSTRAINT IF NOT EXISTS FOR (s:ScoreRecord) REQUIRE s.score_id IS UNIQUE",
            "CREATE INDEX IF NOT EXISTS FOR (s:ScoreRecord) ON (s.user_id)",
            "CREATE INDEX IF NOT EXISTS FOR (s:ScoreRecord) ON (s.calculated_at)",
        ]
        with get_session() as session:
            for q in queries:
                session.run(q)
        logger.info("score_persistence_schema_ready")


def _record_to_dict(node) -> Dict[str, Any]:
    data = dict(node)
    calculated_at = data.get("calculated_at")
    if hasattr(calculated_at, "iso_format"):
        data["calculated_at"] = calculated_at.iso_format()
    if isinstance(data.get("categories"), str):
        data["categories"] = json.loads(data["categories"])
    return data
