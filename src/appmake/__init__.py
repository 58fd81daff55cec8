"""appmake - incremental build orchestration for Erlang/OTP application packages."""

__version__ = "0.1.0"
