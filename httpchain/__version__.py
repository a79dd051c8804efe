__title__ = "httpchain"
__description__ = "A chainable HTTP request builder with timeout-bounded execution."
__version__ = "1.0.0"
