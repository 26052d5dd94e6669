"""
PostgreSQL client for shared hidden-agent state.
"""

import logging
from typing import List

import psycopg2

from review_analytics.config.settings import Settings


logger = logging.getLogger(__name__)


class RowStoreClient:
    """Hidden agents in the hosted row-store (table hidden_agents)."""

    def __init__(self, config: Settings):
        self.config = config
        self.conn = None

    def connect(self) -> None:
        """Establish database connection."""
        self.conn = psycopg2.connect(
            host=self.config.postgres_host,
            port=self.config.postgres_port,
            database=self.config.postgres_database,
            user=self.config.postgres_username,
            password=self.config.postgres_password,
            sslmode=self.config.postgres_sslmode
        )

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()

    def get_hidden_agents(self) -> List[str]:
        """
        Fetch all hidden agent ids.

        Returns:
            List of agent ids
        """
        if not self.conn:
            self.connect()

        with self.conn.cursor() as cursor:
            cursor.execute("SELECT agent_id FROM hidden_agents")
            return [row[0] for row in cursor.fetchall()]

    def hide_agent(self, agent_id: str, hidden_by: str = None) -> None:
        """Mark an agent hidden. Hiding an already hidden agent is a no-op."""
        if not self.conn:
            self.connect()

        normalized_id = agent_id.lower()
        query = """
            INSERT INTO hidden_agents (agent_id, hidden_by)
            VALUES (%s, %s)
            ON CONFLICT (agent_id) DO NOTHING
        """
        with self.conn.cursor() as cursor:
            cursor.execute(query, (normalized_id, hidden_by))
            self.conn.commit()
        logger.info(f"Hid agent {normalized_id}")

    def unhide_agent(self, agent_id: str) -> None:
        if not self.conn:
            self.connect()

        normalized_id = agent_id.lower()
        with self.conn.cursor() as cursor:
            cursor.execute("DELETE FROM hidden_agents WHERE agent_id = %s", (normalized_id,))
            self.conn.commit()
        logger.info(f"Unhid agent {normalized_id}")

    def is_agent_hidden(self, agent_id: str) -> bool:
        if not self.conn:
            self.connect()

        with self.conn.cursor() as cursor:
            cursor.execute(
                "SELECT 1 FROM hidden_agents WHERE agent_id = %s",
                (agent_id.lower(),)
            )
            return cursor.fetchone() is not None
