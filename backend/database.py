from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None

    async def connect(self):
        try:
            mongo_url = os.environ['MONGO_URL']
            self.client = AsyncIOMotorClient(mongo_url)
            self.db = self.client[os.environ['DB_NAME']]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {os.environ['DB_NAME']}")

            await self._create_indexes()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def get_db(self):
        return self.db

    async def _create_indexes(self):
        """Create MongoDB indexes for efficient queries."""
        try:
            # Opportunity mirror - GHL id is the join key for approve/reject links
            try:
                await self.db.opportunities.create_index("crm.opportunity_id", unique=True)
            except Exception:
                pass  # Index may already exist with different options
            await self.db.opportunities.create_index("record_id", unique=True)
            await self.db.opportunities.create_index([("created_at", -1)])
            await self.db.opportunities.create_index([("proposal.email_status", 1), ("proposal.last_attempt_at", 1)])

            # Audit log indexes - newest-first listing plus filters
            await self.db.audit_logs.create_index("audit_id", unique=True)
            await self.db.audit_logs.create_index([("timestamp", -1), ("audit_id", -1)])
            await self.db.audit_logs.create_index([("action", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index([("status", 1), ("timestamp", -1)])
            await self.db.audit_logs.create_index([("resource_id", 1), ("timestamp", -1)])
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            logger.error(f"Failed to create indexes: {e}")

database = Database()
