# scripts/init_db.py
import sys
from pathlib import Path

# Ensure project root is on the path when running this script directly
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import asyncio
from ehr_audit.infrastructure.database.session import DATABASE_URL, create_schema, engine


async def init_db():
    await create_schema(engine)
    await engine.dispose()
    print("Audit schema ready:", DATABASE_URL.split("@")[-1])

asyncio.run(init_db())
