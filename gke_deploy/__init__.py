"""Build a Maven application, publish its image to Artifact Registry and deploy it to GKE."""

__version__ = "0.1.0"
