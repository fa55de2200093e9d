"""Parse model output into a Plan and apply it to a sandbox."""

from sandpiper.apply.engine import ApplicationEngine
from sandpiper.apply.parser import ResponseParser, parse_ai_response

__all__ = ["ApplicationEngine", "ResponseParser", "parse_ai_response"]
