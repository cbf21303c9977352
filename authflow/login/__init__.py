"""
ChatGPT login flows: local browser callback listener and device-code polling.
"""
