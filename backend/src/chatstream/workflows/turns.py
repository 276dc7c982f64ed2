"""Durable turn and title workflows using DBOS."""

import logging

from dbos import DBOS, SetEnqueueOptions, SetWorkflowID

from chatstream.db import db
from chatstream.errors import TurnInProgressError
from chatstream.services.orchestrator import TurnOrchestrator
from chatstream.services.provider import ProviderCredentials
from chatstream.services.titles import generate_title
from chatstream.workflows.dbos_config import title_queue, turn_queue

logger = logging.getLogger(__name__)


# A replayed provider call would stream a second reply into the conversation
@DBOS.step(retries_allowed=False)
async def run_turn_step(
    conversation_id: str,
    openai_api_key: str | None,
    openrouter_api_key: str | None,
) -> str | None:
    """Run the orchestrator for the conversation's latest user message."""
    orchestrator = TurnOrchestrator(db)
    try:
        return await orchestrator.run_turn(
            conversation_id,
            ProviderCredentials(
                openai_api_key=openai_api_key,
                openrouter_api_key=openrouter_api_key,
            ),
        )
    except TurnInProgressError as e:
        logger.error(f"Turn rejected for conversation {conversation_id}: {e}")
        return None


@DBOS.workflow()
async def turn_workflow(
    conversation_id: str,
    openai_api_key: str | None = None,
    openrouter_api_key: str | None = None,
) -> str | None:
    """One scheduled turn. The workflow ID is derived from the user message."""
    logger.info(f"Turn workflow {DBOS.workflow_id} started for {conversation_id}")
    return await run_turn_step(conversation_id, openai_api_key, openrouter_api_key)


@DBOS.step()
async def generate_title_step(conversation_id: str, openai_api_key: str | None) -> str | None:
    return await generate_title(
        db, conversation_id, ProviderCredentials(openai_api_key=openai_api_key)
    )


@DBOS.workflow()
async def title_workflow(
    conversation_id: str,
    openai_api_key: str | None = None,
    delay_seconds: float = 0,
) -> str | None:
    """Name the conversation once its first turn has had time to settle."""
    if delay_seconds > 0:
        await DBOS.sleep_async(delay_seconds)
    return await generate_title_step(conversation_id, openai_api_key)


def turn_workflow_id(user_message_id: str) -> str:
    return f"turn-{user_message_id}"


def title_workflow_id(conversation_id: str) -> str:
    return f"title-{conversation_id}"


class DBOSTurnScheduler:
    """Enqueues turn and title workflows on the DBOS queues."""

    async def schedule_turn(
        self,
        conversation_id: str,
        user_message_id: str,
        credentials: ProviderCredentials,
    ) -> str:
        workflow_id = turn_workflow_id(user_message_id)
        with SetWorkflowID(workflow_id):
            with SetEnqueueOptions(queue_partition_key=conversation_id):
                await turn_queue.enqueue_async(
                    turn_workflow,
                    conversation_id,
                    credentials.openai_api_key,
                    credentials.openrouter_api_key,
                )
        logger.info(f"Enqueued turn {workflow_id} for conversation {conversation_id}")
        return workflow_id

    async def schedule_title(
        self,
        conversation_id: str,
        credentials: ProviderCredentials,
        delay_seconds: float,
    ) -> str:
        workflow_id = title_workflow_id(conversation_id)
        with SetWorkflowID(workflow_id):
            await title_queue.enqueue_async(
                title_workflow,
                conversation_id,
                credentials.openai_api_key,
                delay_seconds,
            )
        logger.info(f"Enqueued title generation for {conversation_id} in {delay_seconds}s")
        return workflow_id
