class SpotinstAPIError(Exception):
    """
    raised when the Spot API answers with a payload that
    doesn't match the expected response envelope.
    """


class MissingCacheEntryError(LookupError):
    """
    MissingCacheEntryError signals that no live label entry exists
    for a resource. It's an expected condition while the label cache
    warms up or for newly created workloads, never a fatal error.
    """

    def __init__(self, key: "object") -> "None":
        super().__init__(f"expected cache to contain entry for key: {key}")
        self.key = key


class LabelMappingError(ValueError):
    """
    raised for a malformed label mapping.
    """
