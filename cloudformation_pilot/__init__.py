from .stack_pilot import main  # noqa F401
