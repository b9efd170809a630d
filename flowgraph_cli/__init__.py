"""FlowGraph CLI: call graphs and control-flow graphs from source projects."""

__version__ = "0.3.0"
