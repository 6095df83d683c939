"""
Lambda function to cancel stale upload sessions.
Triggered on a schedule by an EventBridge rule.
"""
import asyncio
import json
import logging
from typing import List
from src.adapters.registry import build_adapters, create_http_client
from src.core.dependencies import get_credential_provider, get_session_repository, get_staging_repository
from src.core.exceptions import DynamoDBException
from src.services.stale_session_reaper import StaleSessionReaper
from src.services.upload_orchestrator import UploadOrchestrator

logger = logging.getLogger()
logger.setLevel(logging.INFO)


async def _sweep() -> List[str]:
    # Each invocation gets its own event loop, so the HTTP client cannot be shared across them
    async with create_http_client() as client:
        orchestrator = UploadOrchestrator(
            session_repository=get_session_repository(),
            credential_provider=get_credential_provider(),
            adapters=build_adapters(client),
            staging_repository=get_staging_repository()
        )
        return await StaleSessionReaper(orchestrator).sweep()


def handler(event, context):
    """
    Lambda handler running one reaper sweep.

    Args:
        event: Scheduled event (contents unused)
        context: Lambda context object

    Returns:
        dict: Sweep result with the reaped session ids
    """
    try:
        reaped = asyncio.run(_sweep())
    except DynamoDBException as e:
        logger.error("Reaper sweep failed: %s", e.message)
        return {
            'statusCode': 500,
            'body': json.dumps({
                'error': 'Database Error',
                'message': e.message
            })
        }

    logger.info("Reaped %d stale sessions", len(reaped))
    return {
        'statusCode': 200,
        'body': json.dumps({
            'message': f'Reaped {len(reaped)} stale sessions',
            'reaped_session_ids': reaped
        })
    }
