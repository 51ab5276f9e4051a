from __future__ import annotations

import logging
from dataclasses import replace
from enum import Enum
from typing import Optional, Tuple

from engine.state import Layer, LayerStack, TextContent

logger = logging.getLogger(__name__)


class TextEditState(Enum):
    IDLE = "idle"
    ADDING = "adding"
    EDITING = "editing"


class TextEditSession:
    """
    Text tool state: Idle -> Adding -> Idle, or Idle -> Editing(layer) -> Idle.

    While a draft is open every other tool is blocked.
    """

    def __init__(self, default_text: str = "Lorem ipsum") -> None:
        self.default_text = default_text
        self.state = TextEditState.IDLE
        self.layer_id: Optional[str] = None
        self.draft = ""
        self.position: Tuple[int, int] = (0, 0)

    @property
    def blocks_tools(self) -> bool:
        return self.state is not TextEditState.IDLE

    def begin_add(self, position: Tuple[int, int]) -> bool:
        if self.blocks_tools:
            return False
        self.state = TextEditState.ADDING
        self.layer_id = None
        self.draft = self.default_text
        self.position = (int(position[0]), int(position[1]))
        return True

    def begin_edit(self, layer: Layer) -> bool:
        if self.blocks_tools or layer.kind != "text" or layer.locked:
            return False
        self.state = TextEditState.EDITING
        self.layer_id = layer.id
        self.draft = layer.content.text
        self.position = layer.position
        return True

    def update(self, text: str) -> bool:
        if not self.blocks_tools:
            return False
        self.draft = text
        return True

    def apply(self, stack: LayerStack) -> Optional[Layer]:
        """Commit the draft to the stack and return to idle."""
        if not self.blocks_tools:
            return None
        layer: Optional[Layer] = None
        if self.state is TextEditState.ADDING:
            if self.draft:
                layer = stack.add_text_layer(self.draft, position=self.position)
        else:
            target = stack.find(self.layer_id)
            if target is not None and isinstance(target.content, TextContent):
                if stack.set_content(target.id, replace(target.content, text=self.draft)):
                    target.name = f"Text: {self.draft}"
                    layer = target
        self._reset()
        return layer

    def cancel(self) -> None:
        self._reset()

    def handle_key(self, key: str) -> bool:
        if key == "Escape" and self.blocks_tools:
            self.cancel()
            return True
        return False

    def _reset(self) -> None:
        logger.debug("text edit back to idle from %s", self.state.value)
        self.state = TextEditState.IDLE
        self.layer_id = None
        self.draft = ""
