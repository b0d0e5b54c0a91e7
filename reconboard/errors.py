from __future__ import annotations


class ProviderError(Exception):
    """An external intelligence source returned no usable data."""


class ShodanError(ProviderError):
    pass


class GeolocationError(ProviderError):
    pass


class PortProbeError(ProviderError):
    pass
