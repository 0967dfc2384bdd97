"""
A2A (Agent-to-Agent) Protocol Wire Types

Data models and the Server-Sent Events codec shared by the server and client.
"""

__version__ = "0.1.0"
