"""Interactive sign-in step: ChatGPT browser login, device code, or API key."""

__version__ = "0.1.0"
