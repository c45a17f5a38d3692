"""
esgraph Configuration

We read configuration from 2 sources, in order of precedence (higher is more priority)
- Environment variables
- A .env file, either in the current working directory or in a location specified
  by the ESGRAPH_ENV_FILE environment variable

The entities, relations and extensions are structured settings, given as JSON, e.g.:

ESGRAPH_ENTITIES='[{"type_name": "Ecommerce", "index": "kibana_sample_data_ecommerce", "plural_fields": ["products"]}]'
ESGRAPH_RELATIONS='{"contentOrders": {"entity": "Ecommerce", "foreign_key": "products.product_id"}}'
ESGRAPH_EXTENSIONS='[{"type_name": "Content", "key_fields": ["id"],
                      "added_fields": {"ecommerces": {"relation": "contentOrders"}}}]'
"""

import functools
from pathlib import Path
from typing import Annotated, Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PREFIX = "esgraph_"


class EntitySettings(BaseModel):
    """An elastic index served as an entity type"""

    type_name: Annotated[str, Field(pattern=r"^[A-Za-z][_0-9A-Za-z]*$", description="GraphQL type name")]
    index: Annotated[str, Field(description="Elastic index (or alias) containing the documents")]
    plural_fields: Annotated[
        list[str], Field(description="Names or dotted paths of fields that contain multiple values")
    ] = []
    mapping: Annotated[
        dict[str, Any] | None, Field(description="Elastic mapping to use. If not given, it is read from the index")
    ] = None
    tiebreak_field: Annotated[
        str | None, Field(description="Sortable field with unique values, used to give documents a stable order")
    ] = None


class RelationSettings(BaseModel):
    entity: Annotated[str, Field(description="Type name of the related entity")]
    foreign_key: Annotated[str, Field(description="Field of the related entity that contains the parent id")]


class AddedFieldSettings(BaseModel):
    relation: Annotated[str, Field(description="Name of the relation that resolves this field")]
    parent_key: Annotated[
        str | None, Field(description="Field of the extended type holding the parent id. Default: the first key field")
    ] = None
    return_type: Annotated[str | None, Field(description="GraphQL type. Default: a list of the related entity")] = None


class ExtensionSettings(BaseModel):
    """A type owned by another subgraph, extended with fields that are resolved from this subgraph"""

    type_name: str
    key_fields: list[str] = ["id"]
    external_fields: Annotated[
        dict[str, str], Field(description="External fields and their GraphQL types. Key fields default to ID!")
    ] = {}
    added_fields: dict[str, AddedFieldSettings] = {}


class Settings(BaseSettings):
    env_file: Annotated[
        Path,
        Field(
            description="Location of a .env file (if used) relative to working directory",
        ),
    ] = Path(".env")

    port: Annotated[int, Field(description="Port to serve the GraphQL endpoint on")] = 9201

    elastic_password: Annotated[
        str | None,
        Field(
            description=(
                "Elasticsearch password. This the password for the 'elastic' user when Elastic xpack security is enabled"
            )
        ),
    ] = None

    elastic_host: Annotated[
        str | None,
        Field(
            description=(
                "Elasticsearch host. "
                "Default: https://localhost:9200 if elastic_password is set, http://localhost:9200 otherwise"
            )
        ),
    ] = None

    elastic_verify_ssl: Annotated[
        bool | None,
        Field(
            description=(
                "Elasticsearch verify SSL (only used if elastic_password is set). Default: True unless host is localhost)"
            ),
        ),
    ] = None

    entities: Annotated[list[EntitySettings], Field(description="The indices to serve")] = []
    relations: Annotated[dict[str, RelationSettings], Field(description="Relations used by extension fields")] = {}
    extensions: Annotated[list[ExtensionSettings], Field(description="Types of other subgraphs to extend")] = []

    relation_size: Annotated[
        int, Field(ge=1, description="Number of related documents retrieved per search request of a relation lookup")
    ] = 1000

    debug: Annotated[bool, Field(description="Include stack traces in GraphQL errors")] = False

    @model_validator(mode="after")
    def set_ssl(self: Any) -> "Settings":
        if not self.elastic_host:
            self.elastic_host = ("https" if self.elastic_password else "http") + "://localhost:9200"
        if self.elastic_verify_ssl is None:
            self.elastic_verify_ssl = self.elastic_host not in {
                "http://localhost:9200",
                "https://localhost:9200",
            }
        return self

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX)


@functools.lru_cache()
def get_settings() -> Settings:
    # Read the location of the env file first, so the variables in it are picked up by the real settings
    temp = Settings()
    load_dotenv(temp.env_file, override=False)
    return Settings()


def validate_settings() -> str | None:
    """Check the settings for problems that do not prevent startup. Returns a warning message, if any"""
    settings = get_settings()
    if not settings.entities:
        return "No entities are configured, there is nothing to serve"
    type_names = {e.type_name for e in settings.entities}
    for name, relation in settings.relations.items():
        if relation.entity not in type_names:
            return f"Relation {name} refers to unknown entity {relation.entity}"
    return None


if __name__ == "__main__":
    # Echo the settings
    for k, v in get_settings().model_dump().items():
        print(f"{ENV_PREFIX.upper()}{k.upper()}={v}")
