"""
Figma Tools - MCP Tool Catalog

This module declares every tool the relay exposes to MCP clients. Each tool
has a name, a description and a pydantic model for its arguments; the model's
JSON schema is published as the tool's ``inputSchema`` and the same model
validates incoming arguments before anything is executed.

Argument names are camelCase on the wire (``nodeId``) and snake_case in the
models; unknown properties are always rejected.
"""


import json
import logging
from dataclasses import dataclass
from typing import Optional, List, Any, Dict, Literal, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class ToolValidationError(ValueError):
    """Arguments rejected before any side effect."""

    code = "invalid_arguments"


class UnsupportedOperationError(ValueError):
    """The requested operation is not supported in this context (e.g. nested batches)."""

    code = "unsupported_operation"


# ============================================
# ============ INTERNAL HELPERS ==============
# ============================================

def to_json_text(result: Any) -> str:
    """Render a tool result as the pretty-printed JSON text returned to the agent."""
    return json.dumps(result, indent=2, ensure_ascii=False, default=str)


def _format_validation_error(tool_name: str, error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "arguments"
        problems.append(f"{location}: {item.get('msg')}")
    return f"Invalid arguments for {tool_name}: " + "; ".join(problems)


# ============================================
# == PYDANTIC MODELS FOR COMPLEX PARAMETERS ==
# ============================================

class ToolArgs(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel)


class RGBAColor(ToolArgs):
    r: Optional[float] = None
    g: Optional[float] = None
    b: Optional[float] = None
    a: Optional[float] = None


class FontName(ToolArgs):
    family: Optional[str] = None
    style: Optional[str] = None


class Annotation(ToolArgs):
    label: Optional[str] = None
    label_markdown: Optional[str] = None
    category_id: Optional[str] = None
    properties: Optional[List[Dict[str, Any]]] = None


class CornerRadii(ToolArgs):
    top_left: Optional[float] = None
    top_right: Optional[float] = None
    bottom_left: Optional[float] = None
    bottom_right: Optional[float] = None


class TextReplacement(ToolArgs):
    node_id: str
    text: str
    font_name: Optional[FontName] = None
    font_size: Optional[float] = None


class AnnotationItem(ToolArgs):
    node_id: str
    annotation: Optional[Annotation] = None
    annotations: Optional[List[Annotation]] = None
    label: Optional[str] = None
    label_markdown: Optional[str] = None
    category_id: Optional[str] = None
    properties: Optional[List[Dict[str, Any]]] = None
    index: Optional[int] = Field(None, ge=0)
    replace: Optional[bool] = None
    clear: Optional[bool] = None


class Connection(ToolArgs):
    from_node_id: str
    to_node_id: str
    from_magnet: Optional[str] = None
    to_magnet: Optional[str] = None
    name: Optional[str] = None
    parent_id: Optional[str] = None
    connector_line_type: Optional[str] = None
    connector_start_stroke_cap: Optional[str] = None
    connector_end_stroke_cap: Optional[str] = None
    stroke_weight: Optional[float] = None
    strokes: Optional[List[Any]] = None
    dash_pattern: Optional[List[Any]] = None
    opacity: Optional[float] = None
    style: Optional[Dict[str, Any]] = None


class BatchCall(ToolArgs):
    name: str
    arguments: Optional[Dict[str, Any]] = None


ImageFormat = Literal["PNG", "JPG", "SVG", "PDF"]
PrimaryAxisAlign = Literal["MIN", "CENTER", "MAX", "SPACE_BETWEEN"]
CounterAxisAlign = Literal["MIN", "CENTER", "MAX", "BASELINE"]
AxisSizingMode = Literal["FIXED", "AUTO"]
LayoutSizing = Literal["HUG", "FILL", "FIXED"]


# ============================================
# ======= TOOL ARGUMENT MODELS ===============
# ============================================

# === Category 1: Document & Selection ===

class NoArgs(ToolArgs):
    pass


class DepthArgs(ToolArgs):
    depth: Optional[int] = Field(None, ge=0, description="Child depth to include")


class NodeArgs(ToolArgs):
    node_id: str = Field(description="Figma node id")


class NodeDepthArgs(ToolArgs):
    node_id: str = Field(description="Figma node id")
    depth: Optional[int] = Field(None, ge=0, description="Child depth to include")


class NodeIdsArgs(ToolArgs):
    node_ids: List[str]


class NodeIdsDepthArgs(ToolArgs):
    node_ids: List[str]
    depth: Optional[int] = Field(None, ge=0, description="Child depth to include")


class PageTreeArgs(ToolArgs):
    page_id: Optional[str] = Field(None, description="Optional page node id")
    depth: Optional[int] = Field(None, ge=0, description="Child depth to include")


class SearchNodesArgs(ToolArgs):
    name_contains: Optional[str] = Field(None, description="Case-insensitive substring match")
    type: Optional[str] = Field(None, description="Single node type filter (e.g. TEXT)")
    types: Optional[List[str]] = Field(None, description="Multiple node type filters")
    limit: Optional[int] = Field(None, ge=1, description="Max results (default 100)")
    page_id: Optional[str] = Field(None, description="Optional page node id")
    parent_id: Optional[str] = Field(None, description="Optional parent node id")


class QueryNodesArgs(ToolArgs):
    name_contains: Optional[str] = None
    name_regex: Optional[str] = None
    name_regex_flags: Optional[str] = None
    type: Optional[str] = None
    types: Optional[List[str]] = None
    visible: Optional[bool] = None
    locked: Optional[bool] = None
    opacity_min: Optional[float] = None
    opacity_max: Optional[float] = None
    has_fills: Optional[bool] = None
    has_strokes: Optional[bool] = None
    text_contains: Optional[str] = None
    limit: Optional[int] = Field(None, ge=1)
    page_id: Optional[str] = None
    parent_id: Optional[str] = None


class ScanNodesByTypesArgs(ToolArgs):
    types: Optional[List[str]] = None
    type: Optional[str] = None
    limit: Optional[int] = Field(None, ge=1)
    page_id: Optional[str] = None
    parent_id: Optional[str] = None


class ScanTextNodesArgs(ToolArgs):
    page_id: Optional[str] = None
    parent_id: Optional[str] = None
    limit: Optional[int] = Field(None, ge=1)
    chunk_size: Optional[int] = Field(None, ge=1)
    offset: Optional[int] = Field(None, ge=0)
    include_text: Optional[bool] = None


# === Category 2: Snapshots ===

class DiffSnapshotsArgs(ToolArgs):
    before: Union[Dict[str, Any], List[Any]]
    after: Union[Dict[str, Any], List[Any]]
    ignore_fields: Optional[List[str]] = None


# === Category 3: Annotations ===

class GetAnnotationsArgs(ToolArgs):
    node_id: Optional[str] = Field(None, description="Optional node id to read annotations from")
    page_id: Optional[str] = Field(None, description="Optional page id to scan")
    include_all_pages: Optional[bool] = Field(None, description="Scan all pages (may be slow)")
    include_categories: Optional[bool] = Field(None, description="Include annotation categories metadata")
    limit: Optional[int] = Field(None, ge=1, description="Max annotated nodes to return")


class SetAnnotationArgs(ToolArgs):
    node_id: str = Field(description="Figma node id")
    annotation: Optional[Annotation] = None
    label: Optional[str] = None
    label_markdown: Optional[str] = None
    category_id: Optional[str] = None
    properties: Optional[List[Dict[str, Any]]] = None
    index: Optional[int] = Field(None, ge=0)
    replace: Optional[bool] = None
    clear: Optional[bool] = None


class SetMultipleAnnotationsArgs(ToolArgs):
    items: List[AnnotationItem]


# === Category 4: Export ===

class ExportPngArgs(ToolArgs):
    node_id: str = Field(description="Figma node id")
    scale: Optional[float] = Field(None, ge=0.1, description="Scale factor")


class ExportNodeAsImageArgs(ToolArgs):
    node_id: str
    format: Optional[ImageFormat] = None
    scale: Optional[float] = Field(None, ge=0.1)
    quality: Optional[float] = Field(None, ge=0, le=1)
    svg_outline_text: Optional[bool] = None


class ExportImageToFileArgs(ExportNodeAsImageArgs):
    output_path: Optional[str] = None
    dir: Optional[str] = None
    filename: Optional[str] = None


# === Category 5: Creation ===

class CreateShapeArgs(ToolArgs):
    shape: Optional[Literal["rectangle", "ellipse"]] = None
    width: Optional[float] = Field(None, ge=1)
    height: Optional[float] = Field(None, ge=1)
    x: Optional[float] = None
    y: Optional[float] = None
    parent_id: Optional[str] = Field(None, description="Optional parent node id")
    fill_color: Optional[RGBAColor] = None
    stroke_color: Optional[RGBAColor] = None
    stroke_weight: Optional[float] = None


class CreateBoxArgs(ToolArgs):
    width: Optional[float] = Field(None, ge=1)
    height: Optional[float] = Field(None, ge=1)
    x: Optional[float] = None
    y: Optional[float] = None
    name: Optional[str] = None
    parent_id: Optional[str] = None
    fill_color: Optional[RGBAColor] = None
    stroke_color: Optional[RGBAColor] = None
    stroke_weight: Optional[float] = None


class CreateTextArgs(ToolArgs):
    characters: Optional[str] = None
    font_name: Optional[FontName] = None
    font_size: Optional[float] = None
    x: Optional[float] = None
    y: Optional[float] = None
    name: Optional[str] = None
    parent_id: Optional[str] = None


class CloneNodeArgs(ToolArgs):
    node_id: str
    x: Optional[float] = None
    y: Optional[float] = None
    dx: Optional[float] = None
    dy: Optional[float] = None
    name: Optional[str] = None
    append_to_parent: Optional[bool] = None


class CreateComponentInstanceArgs(ToolArgs):
    component_id: str
    variant_id: Optional[str] = Field(None, description="Optional component id for variant")
    x: Optional[float] = None
    y: Optional[float] = None
    name: Optional[str] = None
    parent_id: Optional[str] = None


# === Category 6: Text ===

class SetTextContentArgs(ToolArgs):
    node_id: str
    text: str
    font_name: Optional[FontName] = None
    font_size: Optional[float] = None


class SetMultipleTextContentsArgs(ToolArgs):
    items: List[TextReplacement]


class SetTextArgs(ToolArgs):
    node_id: str
    characters: str
    font_size: Optional[float] = None
    font_name: Optional[FontName] = None


# === Category 7: Layout ===

class SetLayoutModeArgs(ToolArgs):
    node_id: str
    layout_mode: Literal["NONE", "HORIZONTAL", "VERTICAL"]
    layout_wrap: Optional[Literal["NO_WRAP", "WRAP"]] = None
    primary_axis_align_items: Optional[PrimaryAxisAlign] = None
    counter_axis_align_items: Optional[CounterAxisAlign] = None
    primary_axis_sizing_mode: Optional[AxisSizingMode] = None
    counter_axis_sizing_mode: Optional[AxisSizingMode] = None
    item_spacing: Optional[float] = None
    padding_top: Optional[float] = None
    padding_right: Optional[float] = None
    padding_bottom: Optional[float] = None
    padding_left: Optional[float] = None


class SetPaddingArgs(ToolArgs):
    node_id: str
    top: Optional[float] = None
    right: Optional[float] = None
    bottom: Optional[float] = None
    left: Optional[float] = None


class SetAxisAlignArgs(ToolArgs):
    node_id: str
    primary_axis_align_items: Optional[PrimaryAxisAlign] = None
    counter_axis_align_items: Optional[CounterAxisAlign] = None


class SetLayoutSizingArgs(ToolArgs):
    node_id: str
    horizontal: Optional[LayoutSizing] = None
    vertical: Optional[LayoutSizing] = None
    layout_sizing_horizontal: Optional[LayoutSizing] = None
    layout_sizing_vertical: Optional[LayoutSizing] = None
    primary_axis_sizing_mode: Optional[AxisSizingMode] = None
    counter_axis_sizing_mode: Optional[AxisSizingMode] = None


class SetItemSpacingArgs(ToolArgs):
    node_id: str
    item_spacing: float


class MoveNodeArgs(ToolArgs):
    node_id: str
    x: Optional[float] = None
    y: Optional[float] = None


class ResizeNodeArgs(ToolArgs):
    node_id: str
    width: float
    height: float


# === Category 8: Styles & Components ===

class GetStylesArgs(ToolArgs):
    include_remote: Optional[bool] = Field(None, description="Include team library styles")


class GetLocalComponentsArgs(ToolArgs):
    include_all_pages: Optional[bool] = None


class SetInstanceOverridesArgs(ToolArgs):
    node_id: str
    overrides: Dict[str, Any]


class SetFillColorArgs(ToolArgs):
    node_id: str
    color: Optional[RGBAColor] = None
    fill_color: Optional[RGBAColor] = None


class SetStrokeColorArgs(ToolArgs):
    node_id: str
    color: Optional[RGBAColor] = None
    stroke_color: Optional[RGBAColor] = None
    stroke_weight: Optional[float] = None


class SetCornerRadiusArgs(ToolArgs):
    node_id: str
    corner_radius: Optional[float] = None
    corners: Optional[CornerRadii] = None


class UpdateStyleArgs(ToolArgs):
    node_id: str
    name: Optional[str] = None
    visible: Optional[bool] = None
    locked: Optional[bool] = None
    opacity: Optional[float] = None
    fills: Optional[Union[List[Any], str, Dict[str, Any]]] = None
    strokes: Optional[Union[List[Any], str, Dict[str, Any]]] = None
    stroke_weight: Optional[float] = None
    corner_radius: Optional[float] = None


# === Category 9: Prototyping ===

class GetReactionsArgs(ToolArgs):
    node_id: Optional[str] = None
    page_id: Optional[str] = None
    include_all_pages: Optional[bool] = None
    limit: Optional[int] = Field(None, ge=1)
    highlight_only: Optional[bool] = None


class SetDefaultConnectorArgs(ToolArgs):
    connector_id: Optional[str] = None


class CreateConnectionsArgs(ToolArgs):
    connections: List[Connection]


# === Category 10: Relay-local ===

class BatchCallsArgs(ToolArgs):
    calls: List[BatchCall]
    stop_on_error: Optional[bool] = None


class GetEventsArgs(ToolArgs):
    limit: Optional[int] = Field(None, ge=1, description="Max events to return")
    since: Optional[float] = Field(None, description="Only return events at or after this timestamp (ms)")
    clear: Optional[bool] = Field(None, description="Clear buffer after returning")
    channel: Optional[str] = Field(None, description="Optional channel filter")


class JoinChannelArgs(ToolArgs):
    channel: str


class LeaveChannelArgs(ToolArgs):
    channel: str
    clear: Optional[bool] = None


class ClearEventsArgs(ToolArgs):
    channel: Optional[str] = Field(None, description="Optional channel to clear")


# ============================================
# ===============  TOOLS  ====================
# ============================================

@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    args_model: Type[ToolArgs]

    def input_schema(self) -> Dict[str, Any]:
        schema = self.args_model.model_json_schema(by_alias=True)
        schema.pop("title", None)
        schema.setdefault("properties", {})
        return schema

    def validate(self, arguments: Optional[Dict[str, Any]]) -> ToolArgs:
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise ToolValidationError(f"Invalid arguments for {self.name}: expected an object")
        try:
            return self.args_model.model_validate(arguments)
        except ValidationError as e:
            raise ToolValidationError(_format_validation_error(self.name, e)) from e


TOOLS: List[ToolSpec] = [
    ToolSpec("get_document_info", "Get information about the current Figma document.", NoArgs),
    ToolSpec("get_selection", "Get the current selection on the page.", DepthArgs),
    ToolSpec("read_my_design", "Get detailed node info about the current selection without params.", NoArgs),
    ToolSpec("get_node_info", "Get detailed info for a specific node.", NodeDepthArgs),
    ToolSpec("get_nodes_info", "Get detailed info for multiple nodes by id.", NodeIdsDepthArgs),
    ToolSpec("snapshot_nodes", "Snapshot multiple nodes for later diffing.", NodeIdsDepthArgs),
    ToolSpec("diff_snapshots", "Diff two snapshots created by snapshot_nodes.", DiffSnapshotsArgs),
    ToolSpec("set_focus", "Select a node and scroll viewport to it.", NodeArgs),
    ToolSpec("set_selections", "Set selection to multiple nodes and scroll viewport to show them.", NodeIdsArgs),
    ToolSpec("get_annotations", "Get annotations in the current document or a specific node.", GetAnnotationsArgs),
    ToolSpec("set_annotation", "Create or update an annotation on a node.", SetAnnotationArgs),
    ToolSpec("set_multiple_annotations", "Batch create/update annotations on multiple nodes.", SetMultipleAnnotationsArgs),
    ToolSpec("scan_nodes_by_types", "Scan nodes by types (useful for finding annotation targets).", ScanNodesByTypesArgs),
    ToolSpec("get_node", "Get a node by id.", NodeDepthArgs),
    ToolSpec("get_page_tree", "Get the current page tree (or a specific page by id).", PageTreeArgs),
    ToolSpec("search_nodes", "Search nodes by name/type within a page or parent node.", SearchNodesArgs),
    ToolSpec("query_nodes", "Advanced query for nodes with multiple filters.", QueryNodesArgs),
    ToolSpec("export_png", "Export a node as PNG and return a data URL.", ExportPngArgs),
    ToolSpec("export_svg", "Export a node as SVG and return dataUrl + svg string.", NodeArgs),
    ToolSpec("export_pdf", "Export a node as PDF and return dataUrl.", NodeArgs),
    ToolSpec("create_shape", "Create a rectangle or ellipse on the current page.", CreateShapeArgs),
    ToolSpec("create_rectangle", "Create a rectangle with position, size, and optional name.", CreateBoxArgs),
    ToolSpec("create_frame", "Create a frame with position, size, and optional name.", CreateBoxArgs),
    ToolSpec("create_text", "Create a text node with customizable font properties.", CreateTextArgs),
    ToolSpec("scan_text_nodes", "Scan text nodes with chunking for large designs.", ScanTextNodesArgs),
    ToolSpec("set_text_content", "Set the text content of a single text node.", SetTextContentArgs),
    ToolSpec("set_multiple_text_contents", "Batch update multiple text nodes efficiently.", SetMultipleTextContentsArgs),
    ToolSpec("set_layout_mode", "Set the layout mode and wrap behavior of a frame.", SetLayoutModeArgs),
    ToolSpec("set_padding", "Set padding values for an auto-layout frame.", SetPaddingArgs),
    ToolSpec("set_axis_align", "Set primary and counter axis alignment for auto-layout frames.", SetAxisAlignArgs),
    ToolSpec("set_layout_sizing", "Set horizontal and vertical sizing modes for auto-layout frames.", SetLayoutSizingArgs),
    ToolSpec("set_item_spacing", "Set distance between children in an auto-layout frame.", SetItemSpacingArgs),
    ToolSpec("move_node", "Move a node to a new position.", MoveNodeArgs),
    ToolSpec("resize_node", "Resize a node with new dimensions.", ResizeNodeArgs),
    ToolSpec("delete_node", "Delete a node.", NodeArgs),
    ToolSpec("delete_multiple_nodes", "Delete multiple nodes at once efficiently.", NodeIdsArgs),
    ToolSpec("clone_node", "Create a copy of an existing node with optional position offset.", CloneNodeArgs),
    ToolSpec("get_styles", "Get information about local styles.", GetStylesArgs),
    ToolSpec("get_local_components", "Get information about local components.", GetLocalComponentsArgs),
    ToolSpec("create_component_instance", "Create an instance of a component.", CreateComponentInstanceArgs),
    ToolSpec("get_instance_overrides", "Extract override properties from a selected component instance.", NodeArgs),
    ToolSpec("set_instance_overrides", "Apply extracted overrides to target instances.", SetInstanceOverridesArgs),
    ToolSpec("set_fill_color", "Set the fill color of a node (RGBA).", SetFillColorArgs),
    ToolSpec("set_stroke_color", "Set the stroke color and weight of a node.", SetStrokeColorArgs),
    ToolSpec("set_corner_radius", "Set the corner radius of a node (optionally per-corner).", SetCornerRadiusArgs),
    ToolSpec("get_reactions", "Get all prototype reactions from nodes.", GetReactionsArgs),
    ToolSpec("set_default_connector", "Set a copied FigJam connector as the default connector style.", SetDefaultConnectorArgs),
    ToolSpec("create_connections", "Create FigJam connector lines between nodes.", CreateConnectionsArgs),
    ToolSpec("export_node_as_image", "Export a node as an image (PNG, JPG, SVG, or PDF).", ExportNodeAsImageArgs),
    ToolSpec("export_image_to_file", "Export a node and write the image to a local file path.", ExportImageToFileArgs),
    ToolSpec("set_text", "Set characters on a text node (loads font if needed).", SetTextArgs),
    ToolSpec("update_style", "Update style properties like fills, strokes, opacity, cornerRadius.", UpdateStyleArgs),
    ToolSpec("batch_calls", "Execute multiple tool calls with per-call error handling.", BatchCallsArgs),
    ToolSpec("get_events", "Get recent Figma events captured by the bridge.", GetEventsArgs),
    ToolSpec("join_channel", "Join a specific channel to communicate with Figma.", JoinChannelArgs),
    ToolSpec("leave_channel", "Leave a channel and optionally clear its buffered events.", LeaveChannelArgs),
    ToolSpec("list_channels", "List known channels and event counts.", NoArgs),
    ToolSpec("clear_events", "Clear buffered Figma events.", ClearEventsArgs),
]

TOOLS_BY_NAME: Dict[str, ToolSpec] = {tool.name: tool for tool in TOOLS}


def get_tool(name: str) -> Optional[ToolSpec]:
    return TOOLS_BY_NAME.get(name)


def validate_arguments(name: str, arguments: Optional[Dict[str, Any]]) -> Optional[ToolArgs]:
    """Validate ``arguments`` against the named tool's model.

    Returns None for names outside the catalog; those are forwarded unchecked.
    """
    tool = get_tool(name)
    if tool is None:
        logger.debug(f"Tool {name} not in catalog, forwarding without validation")
        return None
    return tool.validate(arguments)
