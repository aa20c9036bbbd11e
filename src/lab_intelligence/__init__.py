"""Clinical lab risk analysis over FHIR observation data."""
