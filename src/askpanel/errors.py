"""Error kinds shared by the askpanel components."""


class AskPanelError(Exception):
    """Base class for askpanel errors."""


class CapabilityUnavailable(AskPanelError):
    """The host offers no speech recognition or synthesis capability."""


class RequestFailed(AskPanelError):
    """An answer request failed in transport or could not be parsed."""


class EngineCancelFailed(AskPanelError):
    """A speech engine's stop or cancel primitive raised."""
