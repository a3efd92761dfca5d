"""Code generation package for interposer."""

from .compile import compile_intercepted_member, compile_pass_through_member, compile_thunk

__all__ = [
    "compile_intercepted_member",
    "compile_pass_through_member",
    "compile_thunk",
]
