"""funcmodel - Action-node orchestration for function models.

Plans and runs the executable action nodes of a function-model container,
honoring priorities and sequential, parallel, and conditional execution modes.
"""

__version__ = "0.1.0"
