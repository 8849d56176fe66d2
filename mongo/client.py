#!/usr/bin/env python3
"""Shared Motor client for the SSRM endpoint.

The SSRM executor never opens or closes connections: the host application owns
this client, hands collections to the executor, and closes it on shutdown.
"""

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from typing import Optional
import asyncio
import logging

from mongo.constants import MONGO_URI, redact_credentials

logger = logging.getLogger(__name__)


class MongoConfigurationError(RuntimeError):
    """Raised when no MongoDB connection string is configured."""
    pass


class SharedMongoClient:
    """Lazily-connected Motor client with a persistent connection pool"""

    def __init__(self, connection_string: str):
        self.client: Optional[AsyncIOMotorClient] = None
        self.connected = False
        self.connection_string = connection_string
        self._connect_lock = asyncio.Lock()
        self._warned = False

    async def connect(self):
        """Create the Motor client and ping the server once"""
        if not self.connection_string:
            if not self._warned:
                logger.warning("MONGO_URI is not configured; SSRM requests will fail.")
                self._warned = True
            raise MongoConfigurationError("MONGO_URI environment variable is not defined")

        async with self._connect_lock:
            if self.connected and self.client:
                return

            client = AsyncIOMotorClient(
                self.connection_string,
                maxPoolSize=10,
                serverSelectionTimeoutMS=5000,  # Fail fast on an unreachable server
                retryWrites=True,
            )
            try:
                await client.admin.command("ping")
            except Exception as e:
                client.close()
                logger.error(f"Failed to connect to MongoDB: {redact_credentials(str(e))}")
                raise

            self.client = client
            self.connected = True
            logger.info("Connected to MongoDB")

    async def disconnect(self):
        """Close the pool; the next request reconnects"""
        if self.client:
            self.client.close()
        self.connected = False
        self.client = None

    async def get_collection(self, db_name: str, collection_name: str) -> AsyncIOMotorCollection:
        if not self.connected or not self.client:
            await self.connect()
        return self.client[db_name][collection_name]


# Global instance used by the API layer
mongo_client = SharedMongoClient(MONGO_URI)
