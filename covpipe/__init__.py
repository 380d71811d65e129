"""Coverage orchestration for multi-module Cargo workspaces."""

__version__ = "0.3.0"
