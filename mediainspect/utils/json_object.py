#############################################################################
#
#  Project Name        :    Streaming media inspector
#
#############################################################################
"""
Type hints for the JSON-ready forms returned by the to_dict() methods of
boxes, validation results and manifest analysis
"""

from typing import Any, TypeAlias

JsonValue: TypeAlias = str | int | float | bool | None | list[Any] | dict[str, Any]

JsonObject: TypeAlias = dict[str, JsonValue]
