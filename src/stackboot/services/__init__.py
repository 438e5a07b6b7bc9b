"""Adapters implementing the collaborator ports."""

from stackboot.services.docker_runtime import DockerComposeRuntime
from stackboot.services.postgres_store import PostgresDataStore

__all__ = ["DockerComposeRuntime", "PostgresDataStore"]
