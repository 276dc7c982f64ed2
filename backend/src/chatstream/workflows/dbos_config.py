"""DBOS configuration and initialization."""

import os
from dbos import DBOS, DBOSConfig, Queue

from chatstream.config import settings

# DBOS configuration
# application_version prevents recovery of old workflows after code changes
# Bump this when workflow step order/logic changes to avoid DBOSUnexpectedStepError
WORKFLOW_VERSION = "1"

dbos_config: DBOSConfig = {
    "name": "chatstream",
    "system_database_url": settings.database_url or os.environ.get("DBOS_SYSTEM_DATABASE_URL"),
    "application_version": WORKFLOW_VERSION,
}

# Initialize DBOS - must be done before defining workflows
DBOS(config=dbos_config)

# Queue for turns - one running turn per partition (conversation)
turn_queue = Queue(
    "turns",
    partition_queue=True,  # Partition by conversation_id
    concurrency=1,
)

# Queue for delayed title generation
title_queue = Queue(
    "titles",
    concurrency=5,
)
