"""Async access to a FHIR R4 server."""
from lab_intelligence.fhir.client import FHIRClient

__all__ = ["FHIRClient"]
