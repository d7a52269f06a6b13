"""Real-time chat server with Google sign-in, pods, beans and websocket messaging."""

__version__ = "0.1.0"