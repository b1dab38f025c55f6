"""
Shared Kernel Module
====================

Shared infrastructure used across bounded contexts (logging, HTTP
middleware).

DO NOT add ticket timer logic to the shared kernel.
"""
