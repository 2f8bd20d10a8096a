"""snrna-flow: orchestration of snRNA-seq loading, QC, integration, clustering and annotation."""

try:
    from ._version import __version__
except ImportError:
    __version__ = "unknown"

__author__ = "snrna-flow Team"

from snrna_flow.config import AppConfig, load_and_validate_config
from snrna_flow.exceptions import (
    ConfigurationError,
    MalformedKeyError,
    SnrnaFlowError,
    StageExecutionError,
)
from snrna_flow.model import Artifact, GroupLabel, RunMode, RunTuple, SampleRecord, StageName
from snrna_flow.orchestrator import Orchestrator
