"""nbchat -- stream chat completions into notebook cells."""

__version__ = "0.1.0"
