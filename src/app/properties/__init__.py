"""Property catalog module -- models, schemas, repositories and write service.

Provides SQLAlchemy models (Property, Agent, LocationCache, Amenity,
Notification, IntegrationConfig), Pydantic schemas, the session-factory
repositories, and PropertyService which persists writes and enqueues
portal sync jobs.
"""
