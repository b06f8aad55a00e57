"""Proximity-triggered NPC dialogue: auras, conversation groups, and the
engine that decides when, who and what speaks.

The public entry point is TriggerEngine (npc_chatter.engine). Every external
collaborator (distance, entities, corpora, storage, broadcast, presentation)
is injected, so the engine runs against the in-process implementations that
ship here or against a real host.
"""
