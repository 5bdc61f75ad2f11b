class UpstreamError(Exception):
    """
    UpstreamError is the base for every failure talking to the
    usage or billing feed. Fetchers catch this family only and
    degrade it to "no data this cycle".
    """

    def __init__(self, message: "str", error_type: "str" = "") -> "None":
        super().__init__(message)
        self.message = message
        self.error_type = error_type or type(self).__name__


class TransportFailure(UpstreamError):
    """
    no response at all: connection refused, DNS, timeouts.
    """


class MalformedResponse(UpstreamError):
    """
    a response arrived but its body does not have the expected shape.
    """


class ThrottlingError(UpstreamError):
    """
    the upstream asked us to slow down (HTTP 429 or a rate_limit_error body).
    """


class OtherUpstreamError(UpstreamError):
    """
    any other explicit upstream error, e.g. authentication or permission.
    Retrying sooner cannot help, so it never drives the backoff.
    """


class ConfigError(ValueError):
    pass
