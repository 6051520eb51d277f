class InvalidConfiguration(ValueError):
    """Raised when intervals, threshold or window size cannot drive the engine.

    Always raised before any tick is scheduled, never from inside a cycle.
    """
