"""Host session wiring.

Builds the standalone collaborators (JSON storage, in-memory scene and
corpora, broadcast channel, presentation) and the TriggerEngine that owns
all dialogue state. One Host exists per process; the FastAPI app keeps it on
``app.state.host``.
"""

import logging
import os
import random
import time
from pathlib import Path
from typing import Callable

from npc_chatter.dispatch import InMemoryBroadcast, TransientPresentation
from npc_chatter.engine import TriggerEngine
from npc_chatter.relay import WebhookRelay
from npc_chatter.scene import PlanarDistance, dump_snapshot, load_snapshot
from npc_chatter.storage import Storage

logger = logging.getLogger(__name__)


class Host:
    def __init__(
        self,
        data_dir: Path,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.time,
        webhooks: list[str] | None = None,
    ) -> None:
        self.storage = Storage(data_dir)
        self.scene, self.corpora = load_snapshot(self.storage.load_scene(), rng=rng)
        self.channel = InMemoryBroadcast()
        self.presentation = TransientPresentation()
        self.engine = TriggerEngine(
            directory=self.scene,
            corpora=self.corpora,
            distance=PlanarDistance(float(os.getenv("DISTANCE_SCALE", "1.0"))),
            storage=self.storage,
            presentation=self.presentation,
            channel=self.channel,
            clock=clock,
            rng=rng,
        )
        self.scene.on_remove(self.engine.handle_entity_removed)

        if webhooks is None:
            webhooks = os.getenv("OBSERVER_WEBHOOKS", "").split(",")
        self.relay = WebhookRelay(webhooks, api_key=os.getenv("OBSERVER_WEBHOOK_KEY", ""))
        self.relay.attach(self.channel)

    def save_scene(self) -> None:
        """Persist entities and corpora to scene.json."""
        self.storage.save_scene(dump_snapshot(self.scene, self.corpora))
