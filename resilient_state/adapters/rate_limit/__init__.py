"""Rate limiting adapters.

A small abstraction layer over the counting algorithm. The current
implementation is a fixed-window counter stored through the state service.
"""
