"""Pipeline error types."""


class FetchError(RuntimeError):
    """A seed page could not be fetched (network, navigation, timeout, non-2xx)."""

    def __init__(self, url: str, reason: str, status_code: int | None = None):
        self.url = url
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"{url}: {reason}")


class WriteError(RuntimeError):
    """A single leaflet record could not be written."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"{url}: {reason}")


class ChainMismatchError(WriteError):
    """A stored record already carries a different chain tag for this URL."""

    def __init__(self, url: str, stored: str, incoming: str):
        self.stored = stored
        self.incoming = incoming
        super().__init__(url, f"chain mismatch (stored {stored}, got {incoming})")
