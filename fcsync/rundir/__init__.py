"""Run directory module for parsing instrument metadata."""

from fcsync.rundir.models import (
    FolderLayout,
    IndexSegment,
    ReadSegment,
    RunDescriptor,
    RunInfo,
    RunParameters,
    SegmentType,
    string_description,
    truncate_segments,
)
from fcsync.rundir.reader import (
    basecalls_dir,
    count_available_cycles,
    guess_folder_layout,
    read_run_directory,
)

__all__ = [
    "FolderLayout",
    "IndexSegment",
    "ReadSegment",
    "RunDescriptor",
    "RunInfo",
    "RunParameters",
    "SegmentType",
    "basecalls_dir",
    "count_available_cycles",
    "guess_folder_layout",
    "read_run_directory",
    "string_description",
    "truncate_segments",
]
