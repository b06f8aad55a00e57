"""HTTP host for npc_chatter: FastAPI app, routes, and session wiring."""
