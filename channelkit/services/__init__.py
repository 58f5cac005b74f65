from channelkit.services.backend_client import BackendClient, Endpoints

__all__ = [
    "BackendClient",
    "Endpoints",
]
