"""esgraph: an elastic index as a federated GraphQL subgraph."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from esgraph.api.graphql import app_graphql
from esgraph.config import get_settings
from esgraph.connections import elastic_connection
from esgraph.subgraph import Subgraph, create_subgraph


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with elastic_connection() as elastic:
        logging.info("Building subgraph schema...")
        try:
            app.state.subgraph = await create_subgraph(get_settings(), elastic)
        except Exception:
            logging.exception("Could not build the subgraph schema")
            raise
        yield


def create_app(subgraph: Subgraph | None = None) -> FastAPI:
    """
    Create the app. If no subgraph is given, it is built from the settings on startup
    """
    app = FastAPI(
        title="esgraph",
        description=__doc__ if __doc__ else "",
        openapi_tags=[dict(name="graphql", description="The GraphQL endpoint")],
        lifespan=None if subgraph is not None else lifespan,
    )
    if subgraph is not None:
        app.state.subgraph = subgraph
    app.include_router(app_graphql)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    return app


app = create_app()
