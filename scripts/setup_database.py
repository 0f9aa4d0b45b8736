# scripts/setup_database.py
"""
Database setup script for the Crop Advisory Coordinator.
Creates the database, the documents table and its indexes, then verifies them.
"""

import asyncio
import os
import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import asyncpg
from infrastructure.storage.postgres_document_store import PostgresDocumentStore
from shared.logging import logger, setup_logging

EXPECTED_INDEXES = {
    "idx_documents_collection",
    "idx_documents_data",
    "idx_agent_tasks_status",
    "idx_agent_tasks_user",
    "idx_agent_decisions_agent",
}

async def create_database_if_not_exists(admin_url: str, database_name: str):
    """Create database if it doesn't exist"""
    admin_conn = await asyncpg.connect(admin_url)
    try:
        db_exists = await admin_conn.fetchval(
            "SELECT 1 FROM pg_database WHERE datname = $1", database_name
        )
        if not db_exists:
            await admin_conn.execute(f'CREATE DATABASE "{database_name}"')
            logger.info(f"Created database: {database_name}")
        else:
            logger.info(f"Database already exists: {database_name}")
    finally:
        await admin_conn.close()

async def setup_tables(database_url: str):
    """Create the documents table and indexes through the store itself"""
    store = PostgresDocumentStore(database_url, min_size=1, max_size=2)
    try:
        await store.initialize()
        logger.info("✓ Created documents table and indexes")
    finally:
        await store.close()

async def verify_setup(database_url: str):
    """Verify the database setup is working correctly"""
    conn = await asyncpg.connect(database_url)
    try:
        logger.info("Verifying database setup...")

        table = await conn.fetchval("""
            SELECT table_name FROM information_schema.tables
            WHERE table_schema = 'public' AND table_name = 'documents'
        """)
        if not table:
            raise RuntimeError("Missing table: documents")

        indexes = await conn.fetch("""
            SELECT indexname FROM pg_indexes
            WHERE schemaname = 'public' AND tablename = 'documents'
        """)
        missing = EXPECTED_INDEXES - {row["indexname"] for row in indexes}
        if missing:
            logger.warning("Missing indexes", indexes=sorted(missing))
        else:
            logger.info(f"✓ Found {len(EXPECTED_INDEXES)} indexes")

        # Round-trip a throwaway document
        await conn.execute("""
            INSERT INTO documents (collection, doc_id, data)
            VALUES ('_setup', 'verification', '{"test": true}')
            ON CONFLICT (collection, doc_id) DO NOTHING
        """)
        found = await conn.fetchval("""
            SELECT data->>'test' FROM documents WHERE collection = '_setup' AND doc_id = 'verification'
        """)
        await conn.execute("DELETE FROM documents WHERE collection = '_setup'")
        if found != "true":
            raise RuntimeError("Failed to insert/query test document")

        logger.info("✓ Basic database operations working")
    finally:
        await conn.close()

async def main():
    setup_logging(level="INFO", json_logs=False)
    logger.info("Starting Crop Advisory Coordinator database setup")

    database_url = os.getenv("DATABASE_URL")

    if not database_url:
        # Default local development setup
        host = os.getenv("DB_HOST", "localhost")
        port = os.getenv("DB_PORT", "5432")
        user = os.getenv("DB_USER", "postgres")
        password = os.getenv("DB_PASSWORD", "postgres")
        database = os.getenv("DB_NAME", "crop_advisory")

        database_url = f"postgresql://{user}:{password}@{host}:{port}/{database}"
        admin_url = f"postgresql://{user}:{password}@{host}:{port}/postgres"

        logger.info(f"Using database: {host}:{port}/{database}")

        try:
            await create_database_if_not_exists(admin_url, database)
        except Exception as e:
            logger.warning(f"Could not create database (may already exist): {e}")

    try:
        await setup_tables(database_url)
        await verify_setup(database_url)
        logger.info("Database setup completed successfully!")
    except Exception as e:
        logger.error(f"Database setup failed: {e}")
        sys.exit(1)

if __name__ == "__main__":
    asyncio.run(main())
