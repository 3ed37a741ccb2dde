from clipforge.render.pipeline import (
    ExportHandle,
    ExportPipeline,
    ExportProgress,
    ExportState,
    cancel_export,
    export_timeline,
    start_export,
)
from clipforge.render.segment_planner import Segment, build_segments
from clipforge.render.segment_renderer import SegmentRenderer, SegmentStrategy
from clipforge.render.sequence_assembler import SequenceAssembler

__all__ = [
    "ExportHandle",
    "ExportPipeline",
    "ExportProgress",
    "ExportState",
    "Segment",
    "SegmentRenderer",
    "SegmentStrategy",
    "SequenceAssembler",
    "build_segments",
    "cancel_export",
    "export_timeline",
    "start_export",
]
