from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class CamelModel(BaseModel):
    """Base for every payload that crosses the wire; clients speak camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
