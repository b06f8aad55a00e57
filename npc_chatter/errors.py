"""Exception hierarchy.

    ChatterError
      ConfigValidationError    malformed aura/group/settings payload, never stored
        AuraValidationError
        GroupValidationError
      MissingReferenceError    entity or corpus gone at evaluation time
      PersistenceError         durable write failed
      DispatchError            presentation, broadcast or mirror failed
      UnknownAuraError         also a LookupError
      UnknownGroupError        also a LookupError
"""

from __future__ import annotations


class ChatterError(Exception):
    """Base class for every error raised by npc_chatter."""


class ConfigValidationError(ChatterError, ValueError):
    """Raised when a configuration payload is rejected at the CRUD boundary."""


class AuraValidationError(ConfigValidationError):
    pass


class GroupValidationError(ConfigValidationError):
    pass


class MissingReferenceError(ChatterError):
    """An entity or corpus referenced by an aura/group no longer resolves."""


class PersistenceError(ChatterError):
    """A durable write failed. In-memory state is left as it is."""


class DispatchError(ChatterError):
    """Presentation, broadcast or mirror delivery failed for an utterance."""


class UnknownAuraError(ChatterError, LookupError):
    pass


class UnknownGroupError(ChatterError, LookupError):
    pass
