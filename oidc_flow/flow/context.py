"""
Explicit carrier for the inbound callback request.
"""

from dataclasses import dataclass, field
from typing import Mapping, Optional, Union
from urllib.parse import parse_qsl


@dataclass(frozen=True)
class RequestContext:
    """Query and form parameters of the request being handled."""

    query: Mapping[str, str] = field(default_factory=dict)
    form: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_query_string(cls, query_string: str) -> "RequestContext":
        return cls(query=_parse(query_string.lstrip("?")))

    @classmethod
    def from_form_body(cls, body: Union[str, bytes], query_string: str = "") -> "RequestContext":
        if isinstance(body, bytes):
            body = body.decode("utf-8")
        return cls(query=_parse(query_string.lstrip("?")), form=_parse(body))

    def get(self, name: str, response_mode: str = "query") -> Optional[str]:
        """Read ``name`` from the channel used by ``response_mode``."""
        source = self.form if response_mode == "form_post" else self.query
        value = source.get(name)
        if value is None:
            return None
        value = str(value).strip()
        return value or None


def _parse(encoded: str) -> Mapping[str, str]:
    # First occurrence wins for repeated parameters
    params = {}
    for key, value in parse_qsl(encoded, keep_blank_values=True):
        params.setdefault(key, value)
    return params
