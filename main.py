"""
grantclient entry point: run one search against the configured grants service.

    python main.py "cancer research"
"""

import asyncio
import sys

from loguru import logger

from grantclient.datasource.grants import GrantsApi
from grantclient.search.orchestrator import SearchOrchestrator, SearchStatus
from grantclient.services.client import close_service_client, get_service_client
from grantclient.settings import global_settings


async def main(search_term: str = "") -> None:
    """Search once and print the first page."""
    logger.info(f"Searching grants at {global_settings.api_base_url}...")

    client = get_service_client()
    orchestrator = SearchOrchestrator(GrantsApi(client))
    try:
        await orchestrator.submit_search(search_term)
        state = orchestrator.state

        if state.status == SearchStatus.ERROR:
            logger.error(state.error)
            return

        logger.info(f"{state.total_count} grants, page 1 of {state.total_pages}")
        for grant in state.grants:
            logger.info(f"  {grant.id}  {grant.title}")
    finally:
        await orchestrator.close()
        logger.debug(f"Cache: {client.cache.get_stats().to_dict()}")
        logger.debug(f"Dedup: {client.deduplicator.get_stats().to_dict()}")
        await close_service_client()


if __name__ == "__main__":
    asyncio.run(main(" ".join(sys.argv[1:])))
