"""Clinic records service with a tool-calling AI assistant.

This package contains a FastAPI service that stores FHIR-shaped clinic
records (patients, practitioners, appointments, encounters, observations,
conditions, medication requests) as flat JSON files, and an assistant that
reads and changes those records by writing tool blocks into its replies.
"""
