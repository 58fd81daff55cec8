"""Compiler toolchains."""

from appmake.toolchain.base import CompileError, ScanError, Toolchain
from appmake.toolchain.erlc import ErlcToolchain

__all__ = ["CompileError", "ErlcToolchain", "ScanError", "Toolchain"]
