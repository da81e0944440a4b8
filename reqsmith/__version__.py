__title__ = "reqsmith"
__description__ = "Single-shot HTTP request execution with timing and response analysis."
__version__ = "0.1.0"
