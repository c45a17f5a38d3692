import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from elasticsearch import AsyncElasticsearch

from esgraph.config import Settings, get_settings


class ElasticConnection:
    """Holds the shared (read-only) elastic client of the running server"""

    client: AsyncElasticsearch | None = None


CONNECTION = ElasticConnection()


@asynccontextmanager
async def elastic_connection() -> AsyncGenerator[AsyncElasticsearch, None]:
    """
    Connect to elastic for the duration of the context, i.e. the FastAPI lifespan or a CLI command.
    Within the context, es() gives the client.
    """
    try:
        yield await _connect(get_settings())
    finally:
        await _disconnect()


def es() -> AsyncElasticsearch:
    if CONNECTION.client is None:
        raise ConnectionError("Elasticsearch connection not initialized")
    return CONNECTION.client


def _client(settings: Settings) -> AsyncElasticsearch:
    if settings.elastic_password:
        return AsyncElasticsearch(
            settings.elastic_host,
            basic_auth=("elastic", settings.elastic_password),
            verify_certs=bool(settings.elastic_verify_ssl),
        )
    return AsyncElasticsearch(settings.elastic_host or None)


async def _connect(settings: Settings) -> AsyncElasticsearch:
    logging.debug(f"Connecting to elasticsearch at {settings.elastic_host}")
    CONNECTION.client = _client(settings)
    if not await CONNECTION.client.ping():
        raise ConnectionError(f"Cannot connect to elasticsearch server {settings.elastic_host}")
    logging.info(f"Connected to elasticsearch at {settings.elastic_host}")
    return CONNECTION.client


async def _disconnect() -> None:
    if CONNECTION.client is not None:
        await CONNECTION.client.close()
        CONNECTION.client = None
