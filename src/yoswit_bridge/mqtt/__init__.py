from .cloud import CloudMQTTClient, build_envelope

__all__ = ["CloudMQTTClient", "build_envelope"]
