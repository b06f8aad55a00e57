"""Create a demo tavern scene for development/testing."""

import shutil
from pathlib import Path

from backend.host import Host

DEMO_ENTITIES = [
    {"id": "barkeep", "name": "Brunolf the Barkeep", "position": {"x": 0, "y": 0}},
    {"id": "bard", "name": "Lysa the Bard", "position": {"x": 60, "y": 10}},
    {"id": "guard-1", "name": "Gareth", "position": {"x": 200, "y": 0}},
    {"id": "guard-2", "name": "Thrak", "position": {"x": 210, "y": 15}},
    {"id": "player", "name": "Aldric", "position": {"x": 400, "y": 400}, "observer": True},
]

DEMO_CORPORA = [
    {
        "id": "barkeep-lines",
        "name": "Barkeep Greetings",
        "entries": [
            "Rough night out there, friend.",
            "Ale's warm, stew's warmer.",
            "Mind the stranger in the corner.",
        ],
    },
    {
        "id": "guard-banter",
        "name": "Guard Banter",
        "entries": [
            "Quiet shift so far.",
            "Too quiet, if you ask me.",
            "Nobody asked you.",
            "The captain wants us sharp tonight.",
        ],
    },
]


def create_demo_data(data_dir: Path) -> None:
    """Wipe the data directory and create a fresh demo scene."""
    if data_dir.exists():
        shutil.rmtree(data_dir)
    data_dir.mkdir(parents=True)

    host = Host(data_dir)
    host.storage.save_scene({"entities": DEMO_ENTITIES, "corpora": DEMO_CORPORA})
    host = Host(data_dir)

    host.engine.assign_aura("barkeep", "barkeep-lines", range=30)
    host.engine.create_group({
        "name": "Gate Guards",
        "mode": "turn_taking",
        "members": ["guard-1", "guard-2"],
        "shared_corpus_id": "guard-banter",
        "range": 40,
        "delay_seconds": 8,
    })
    host.engine.create_group({
        "name": "Bard and Barkeep",
        "mode": "scripted_custom",
        "members": ["bard", "barkeep"],
        "script": [
            {"speaker_id": "bard", "text": "Another round for the house?"},
            {"speaker_id": "barkeep", "text": "Only if you play something cheerful."},
            {"speaker_id": "bard", "text": "Cheerful costs extra."},
        ],
        "range": 60,
    })

    print(
        f"Created {len(DEMO_ENTITIES)} entities + {len(DEMO_CORPORA)} corpora "
        "+ 1 aura + 2 conversation groups."
    )
