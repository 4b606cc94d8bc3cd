"""Error taxonomy for startup and runtime failures."""


class IpEchoError(Exception):
    """Base class for errors that abort service startup."""


class ConfigError(IpEchoError):
    """Raised when the supplied configuration is malformed."""


class AddressParseError(ConfigError):
    """Raised when a bind string cannot be resolved to a socket address."""


class CertificateLoadError(IpEchoError):
    """Raised when the certificate chain cannot be read or parsed."""


class KeyLoadError(IpEchoError):
    """Raised when the key file yields zero or more than one private key."""


class BindError(IpEchoError):
    """Raised when a listener cannot bind its socket address."""


class TelemetryArithmeticError(ArithmeticError):
    """Raised when a throughput rate would divide by a zero-length interval."""
