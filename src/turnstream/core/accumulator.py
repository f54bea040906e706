"""
Reassembly of tool calls streamed as fragments.

Fragments are addressed by slot index. The first fragment of a slot usually
carries the id and function name; later ones carry further pieces of the
argument text, which are appended in arrival order.
"""

import json
from dataclasses import dataclass

from ..models.contracts import FinalizedToolCall, ToolCallFragment


@dataclass
class ToolCallSlot:
    index: int
    id: str = ""
    function_name: str = ""
    argument_buffer: str = ""


class ToolCallAccumulator:
    """
    Sparse index -> slot map filled during the primary stream.

    Example:
        acc = ToolCallAccumulator()
        acc.ingest(ToolCallFragment(index=0, id="call_1", name="generate_image"))
        acc.ingest(ToolCallFragment(index=0, arguments='{"prompt": "a cat"}'))
        calls = acc.finalize()
    """

    def __init__(self):
        self._slots: dict[int, ToolCallSlot] = {}

    def __len__(self) -> int:
        return len(self._slots)

    @property
    def has_calls(self) -> bool:
        return bool(self._slots)

    def ingest(self, fragment: ToolCallFragment) -> None:
        slot = self._slots.get(fragment.index)
        if slot is None:
            slot = self._slots[fragment.index] = ToolCallSlot(index=fragment.index)

        # Id and name are set once; argument text accumulates
        if fragment.id and not slot.id:
            slot.id = fragment.id
        if fragment.name and not slot.function_name:
            slot.function_name = fragment.name
        if fragment.arguments:
            slot.argument_buffer += fragment.arguments

    def finalize(self) -> list[FinalizedToolCall]:
        """
        Parse every slot's arguments, in ascending index order.

        A slot whose argument text is not a JSON object is returned with
        `parse_error` set instead of raising.
        """
        calls = []
        for index in sorted(self._slots):
            slot = self._slots[index]
            arguments, error = _parse_arguments(slot.argument_buffer)
            calls.append(
                FinalizedToolCall(
                    index=index,
                    id=slot.id or f"call_{index}",
                    name=slot.function_name,
                    raw_arguments=slot.argument_buffer,
                    arguments=arguments,
                    parse_error=error,
                )
            )
        return calls


def _parse_arguments(buffer: str) -> tuple[dict | None, str | None]:
    if not buffer.strip():
        return {}, None
    try:
        parsed = json.loads(buffer)
    except json.JSONDecodeError as e:
        return None, f"Invalid JSON arguments: {e.msg}"
    if not isinstance(parsed, dict):
        return None, f"Arguments must be a JSON object, got {type(parsed).__name__}"
    return parsed, None
