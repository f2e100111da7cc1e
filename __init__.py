"""
License Validator for the InnerEye Gateway installer

Validates a product key against a remote inference service before the
gateway is installed. Candidate settings are written to the processor
configuration, the service is pinged, and the previous configuration is
restored if the ping fails.
"""

__version__ = "1.0.0"
