"""
API server — FastAPI app exposing the monitoring service over HTTP and WebSocket.
"""
