# scripts/deployments_check.py
import sys
from pathlib import Path

# Ensure project root is on the path when running this script directly
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import asyncio

from infra_dashboard.application.deployment_tracker import DeploymentTracker
from infra_dashboard.config.settings import get_settings
from infra_dashboard.infrastructure.database.deployment_repository import DbDeploymentRepository
from infra_dashboard.infrastructure.database.session import build_engine, build_session_factory


async def check():
    engine = build_engine(get_settings().coolify_db_url)
    repo = DbDeploymentRepository(build_session_factory(engine))
    try:
        print("DB:", (await repo.ping()).message)
        live = await DeploymentTracker(repo).live_view()
        print("Active:", [d.uuid for d in live.active])
        print("Stats:", live.stats.to_wire())
    finally:
        await engine.dispose()

asyncio.run(check())
