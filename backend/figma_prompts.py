"""
Prompt catalog published to MCP clients.

Short, task-specific strategies an agent can pull in before working on a
Figma document through the relay's tools.
"""

from dataclasses import dataclass
from typing import Dict, List


# === GENERAL DESIGN STRATEGY ===
DESIGN_STRATEGY = """
You are working with Figma through the relay. Prefer safe, controlled edits:

1.  Start with `get_document_info` and `get_selection` to understand the context.
2.  Read structure before editing: `read_my_design`, `get_node_info`, `get_page_tree`, `search_nodes`.
3.  Make small, incremental changes and confirm each one with `get_node_info`.
4.  For bulk work use the batch tools (`set_multiple_text_contents`, `set_multiple_annotations`, `batch_calls`).
5.  When you need a picture, use `export_node_as_image` or `export_png` / `export_svg` / `export_pdf`.
6.  Never change anything while the request is unclear; ask for the missing details first.
"""

# === READING & ANALYZING DESIGNS ===
READ_DESIGN_STRATEGY = """
Goal: understand the design before touching it.

1.  Use `get_selection` or `read_my_design` for the selected area.
2.  Use `get_page_tree` for an overview of the page structure.
3.  Use `search_nodes` to find nodes quickly by name or type.
4.  For deeper detail, call `get_node_info` with a larger `depth`.
5.  For a visual reference, use `export_node_as_image`.
"""

# === TEXT REPLACEMENT STRATEGY ===
TEXT_REPLACEMENT_STRATEGY = """
Replacing text safely:

1.  List text nodes with `scan_text_nodes`, using a small `chunkSize` on large designs.
2.  Filter the list and prepare a mapping of node id to new text.
3.  Use `set_text_content` for single edits.
4.  Use `set_multiple_text_contents` to update in batches.
5.  If a node has mixed fonts, pass an explicit `fontName`.
"""

# === ANNOTATION STRATEGY ===
ANNOTATION_CONVERSION_STRATEGY = """
Converting manual annotations to native annotations:

1.  Find targets with `scan_nodes_by_types` or `search_nodes`.
2.  Check existing annotations with `get_annotations`.
3.  Apply `set_annotation` per node, or `set_multiple_annotations` for a batch.
4.  Prefer `labelMarkdown` when the formatting matters.
"""

# === INSTANCE OVERRIDES STRATEGY ===
SWAP_OVERRIDES_STRATEGY = """
Transferring overrides between component instances:

1.  Read the source instance with `get_instance_overrides`.
2.  Inspect the override structure before applying it.
3.  Apply it to the target instance with `set_instance_overrides`.
4.  For several targets, repeat per nodeId or wrap the calls in `batch_calls`.
"""

# === PROTOTYPING & CONNECTIONS STRATEGY ===
REACTION_TO_CONNECTOR_STRATEGY = """
Turning prototype reactions into connector lines (FigJam):

1.  Collect reactions per node or page with `get_reactions`.
2.  Select a sample connector in FigJam and call `set_default_connector`.
3.  Map each reaction to `{ fromNodeId, toNodeId }`.
4.  Draw the connectors in one go with `create_connections`.

Connectors are only available in FigJam files.
"""


@dataclass(frozen=True)
class PromptEntry:
    name: str
    description: str
    text: str

    def messages(self) -> List[Dict[str, object]]:
        return [{"role": "user", "content": {"type": "text", "text": self.text.strip()}}]


PROMPT_CATALOG: Dict[str, PromptEntry] = {
    entry.name: entry
    for entry in (
        PromptEntry("design_strategy", "Best practices for working with Figma designs.", DESIGN_STRATEGY),
        PromptEntry("read_design_strategy", "Best practices for reading Figma designs.", READ_DESIGN_STRATEGY),
        PromptEntry(
            "text_replacement_strategy",
            "Systematic approach for replacing text in Figma designs.",
            TEXT_REPLACEMENT_STRATEGY,
        ),
        PromptEntry(
            "annotation_conversion_strategy",
            "Strategy for converting manual annotations to Figma's native annotations.",
            ANNOTATION_CONVERSION_STRATEGY,
        ),
        PromptEntry(
            "swap_overrides_instances",
            "Strategy for transferring overrides between component instances in Figma.",
            SWAP_OVERRIDES_STRATEGY,
        ),
        PromptEntry(
            "reaction_to_connector_strategy",
            "Strategy for converting Figma prototype reactions to connector lines using get_reactions and create_connections.",
            REACTION_TO_CONNECTOR_STRATEGY,
        ),
    )
}


def get_prompt(name: str) -> PromptEntry:
    entry = PROMPT_CATALOG.get(name)
    if entry is None:
        raise ValueError(f"Unknown prompt: {name}")
    return entry
