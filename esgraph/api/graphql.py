"""API Endpoints for GraphQL queries."""

from typing import Any

from ariadne import graphql
from ariadne.explorer import ExplorerGraphiQL
from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import HTMLResponse, JSONResponse

from esgraph.config import get_settings
from esgraph.subgraph import Subgraph

app_graphql = APIRouter(tags=["graphql"])

EXPLORER = ExplorerGraphiQL(title="esgraph")


def get_subgraph(request: Request) -> Subgraph:
    subgraph = getattr(request.app.state, "subgraph", None)
    if subgraph is None:
        raise RuntimeError("The subgraph has not been built, is the app started?")
    return subgraph


@app_graphql.get("/graphql", response_class=HTMLResponse)
def explorer() -> str:
    """The GraphiQL explorer"""
    return EXPLORER.html(None) or ""


@app_graphql.post("/graphql")
async def query(
    request: Request,
    data: dict[str, Any] = Body(..., description="The GraphQL request: query, variables and operationName"),
    subgraph: Subgraph = Depends(get_subgraph),
) -> JSONResponse:
    """
    Execute a GraphQL query. Errors in a field are reported in the errors of the result,
    the other fields are still resolved.
    """
    success, result = await graphql(
        subgraph.schema.schema,
        data,
        context_value=subgraph.context(request),
        debug=get_settings().debug,
    )
    return JSONResponse(result, status_code=200 if success else 400)
